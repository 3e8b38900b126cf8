from fastapi import APIRouter

from application.api.dependencies import ContainerDep

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz(container: ContainerDep):
    settings = container.settings
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.service_version,
    }


@router.get("/metrics")
async def metrics(container: ContainerDep):
    summary = container.metrics.get_metrics_summary()
    summary["background"] = container.background.get_stats()
    summary["cache"] = await container.cache.get_stats()
    summary["agents"] = container.pipeline.get_agents_info()
    return summary
