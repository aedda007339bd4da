"""HTTP routers."""

from realtime_gateway.routers.mobile import router as mobile_router

__all__ = ["mobile_router"]
