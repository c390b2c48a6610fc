"""
Cookie Relay Application
========================

Reverse proxy that forwards a configured path prefix to a fixed upstream
origin and rewrites Set-Cookie and CORS headers so a browser on another
site keeps an authenticated session.

Modules:
    - config.py : environment-driven settings
    - models.py : upstream target and error models
    - main.py   : application factory and lifespan
    - proxy/    : routing, forwarding and response rewriting
"""
