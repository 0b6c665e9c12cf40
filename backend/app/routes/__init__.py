# Routes package init
"""
Orienteer Backend — API Routes Package
========================================

Route Inventory:
    - users.py:     GET    /api/users                  (visible users)
                    GET    /api/users/me               (current profile)
                    GET    /api/users/{id}             (profile lookup)
                    PATCH  /api/users/{id}             (update profile)
                    DELETE /api/users/{id}             (soft delete)
    - events.py:    GET    /api/events/{id}            (event + visible runners)
                    POST   /api/events/{id}/runners    (add self as runner)
                    PATCH  /api/events/{id}/runners/{user_id}
                    DELETE /api/events/{id}/runners/{user_id}
                    POST   /api/events/{id}/maps/{user_id}/{course|route}  (upload map)
    - activity.py:  GET    /api/activity               (activity feed)
    - files.py:     GET    /api/files/{path}           (stored map images)
    - health.py:    GET    /health                     (service health check)

Routes stay thin: resolve the requestor, call a service, return its model.
"""
