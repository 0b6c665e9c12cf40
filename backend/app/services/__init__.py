# Services package init
"""
Orienteer Backend — Services Layer
====================================

Service Inventory:
    - visibility:       read/write permission engine (pure functions)
    - quickroute:       QuickRoute JPEG map metadata decoder (pure, sync)
    - geo:              distance and projection maths
    - file_service:     map upload validation, storage and cleanup
    - user_service:     profiles
    - event_service:    events and runner entries
    - map_service:      map upload → decode → attach workflow
    - activity_service: audit trail recording and the activity feed

Services take an AsyncSession and a Requestor per call and keep no
per-request state; each module exposes one shared instance.
"""
