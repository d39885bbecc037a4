"""Status module: liveness ping and principal introspection over the module pipeline."""

MODULE_CONFIG = {
    "router_name": "status",
    "version": "v1",
    "auth_required": True,
    "methods": {
        "ping": {"public": True, "rate_limit": "120/minute"},
    },
}


async def ping(request, data, caps):
    return {
        "status": "ok",
        "instance": caps.context.instance_id,
        "time": caps.util.now_iso(),
    }


async def whoami(request, data, caps):
    return {
        "user": caps.context.user,
        "isAdmin": caps.context.is_admin(),
    }
