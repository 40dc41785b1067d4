class InternalURIs:
    API = "/api"
    V1 = API + "/v1"
    UPLOAD = V1 + "/upload"
    TUS = UPLOAD + "/tus"
    TUS_UPLOAD = TUS + "/{upload_id}"
    PROJECTS = V1 + "/projects"
    TASK = V1 + "/tasks/{task_id}"


class TusHeaders:
    RESUMABLE = "Tus-Resumable"
    VERSION = "Tus-Version"
    EXTENSION = "Tus-Extension"
    MAX_SIZE = "Tus-Max-Size"
    UPLOAD_LENGTH = "Upload-Length"
    UPLOAD_OFFSET = "Upload-Offset"
    UPLOAD_METADATA = "Upload-Metadata"
    UPLOAD_EXPIRES = "Upload-Expires"
    TASK_ID = "X-Task-Id"


TUS_VERSION = "1.0.0"
TUS_EXTENSIONS = "creation,expiration,termination"
TUS_CONTENT_TYPE = "application/offset+octet-stream"
