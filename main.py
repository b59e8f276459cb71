import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from config import get_config
from contact_store import ContactStore, SqliteContactStore
from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from errors import StoreError, ValidationError
from reconcile import PrimaryNotFound, identify as reconcile_identity

config = get_config()

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=config.log_level,
)
logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal server error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = SqliteContactStore(config.database_path, timeout=config.busy_timeout)
    store.init_schema()
    app.state.store = store
    logger.info("Contact store ready at %s", config.database_path)
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)


def get_store(request: Request) -> ContactStore:
    return request.app.state.store


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.post(
    "/identify",
    response_model=FinalResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def identify(request: IdentifyRequest, store: ContactStore = Depends(get_store)):
    # sync handler: store I/O blocks, so FastAPI runs this in its threadpool
    try:
        result = reconcile_identity(store, request.email, request.phoneNumber)
    except ValidationError as exc:
        return error_response(400, str(exc))
    except StoreError:
        logger.exception("Contact store failure while identifying %s", request.model_dump())
        return error_response(500, INTERNAL_ERROR)
    except Exception:
        logger.exception("Error processing identify request")
        return error_response(500, INTERNAL_ERROR)

    if isinstance(result, PrimaryNotFound):
        logger.error("No primary contact after reconciliation, cluster state: %s", result.contacts)
        return error_response(500, INTERNAL_ERROR)

    return FinalResponse(contact=result)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.host, port=config.port)
