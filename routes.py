# routes.py
from fastapi import FastAPI
from controller.project_controller import project_router
from controller.task_controller import task_router
from controller.tus_controller import tus_router
from controller.upload_controller import upload_router


def register_routes(app: FastAPI) -> None:
    """Register & Access control controllers here."""
    app.include_router(tus_router)
    app.include_router(upload_router)
    app.include_router(project_router)
    app.include_router(task_router)
