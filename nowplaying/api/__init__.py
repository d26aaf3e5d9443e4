"""HTTP API: FastAPI routers, services and provider adapters"""
