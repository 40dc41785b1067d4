# controller/project_controller.py
from fastapi import APIRouter, Depends, status
from model.api import CreateProjectRequest, CreateProjectResponse
from service.repository_provisioner import RepositoryProvisioner
from util.constants import InternalURIs
from controller.controller_dependencies import caller_identity, get_provisioner, rate_limit

project_router = APIRouter(dependencies=[Depends(rate_limit)])


@project_router.post(
    InternalURIs.PROJECTS,
    response_model=CreateProjectResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_project(
    payload: CreateProjectRequest,
    owner_id: str = Depends(caller_identity),
    provisioner: RepositoryProvisioner = Depends(get_provisioner),
) -> CreateProjectResponse:
    # Accepted, not done: the repository is provisioned by the CREATE_REPO task.
    created = provisioner.create_project(owner_id, payload.name)
    return CreateProjectResponse(
        taskId=created.taskId,
        projectId=created.projectId,
        projectName=created.projectName,
    )
