"""
Services Layer

The staging core components:
- assignment_engine: couples into groups (manual and automatic)
- match_generation: remote generation with the re-generation guard
- match_lifecycle: result entry and derived winners
- court_scheduler: live / next / upcoming / completed views per court
- live_timer: the shared countdown for time-limited matches
- staging_service: wires them to the Entity Store and the remote service

Nothing here depends on HTTP request/response objects.
"""
