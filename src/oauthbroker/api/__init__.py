# Broker HTTP surface
# Created: 2026-10-19
#
# FastAPI router for /, /callback, /token and /revoke plus the app factory.
