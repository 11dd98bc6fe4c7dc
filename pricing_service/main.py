from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, HTTPException, Request, status

# Use relative imports
from . import config, schemas
from .dispatcher import CalculationDispatcher
from .errors import CalculationError, InvalidInputError

# Basic logging setup
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Pricing Service starting up...")
    logger.info(f"Listening on {config.APP_HOST}:{config.APP_PORT}")
    dispatcher = CalculationDispatcher()
    state = dispatcher.start()
    logger.info(f"Calculation dispatcher state: {state.value}")
    app.state.dispatcher = dispatcher
    yield
    logger.info("Pricing Service shutting down...")
    # Joining the worker thread blocks, keep it off the event loop
    await asyncio.to_thread(dispatcher.stop)


app = FastAPI(
    title="Pricing Service",
    description="Calculates order totals, discounts and tax for POS terminals.",
    version="0.2.0",
    lifespan=lifespan
)


def _dispatcher(request: Request) -> CalculationDispatcher:
    return request.app.state.dispatcher


@app.get("/health", tags=["Monitoring"], summary="Health Check")
async def health_check(request: Request):
    """Basic health check endpoint."""
    return {"status": "healthy", "worker": _dispatcher(request).state.value}


@app.post(
    "/calculate/order-total",
    response_model=schemas.OrderTotalResult,
    tags=["Pricing"],
    summary="Calculate Order Total"
)
async def calculate_order_total_endpoint(request_data: schemas.OrderTotalRequest, request: Request):
    """
    Receives cart line items and the optional active discount and returns
    subtotal, discount amount and total.
    """
    logger.info(f"Received order total request for {len(request_data.items)} item(s)")
    try:
        return await _dispatcher(request).compute_order_total(request_data.items, request_data.discount)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CalculationError as e:
        logger.exception(f"Error calculating order total: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during price calculation."
        )


@app.post(
    "/calculate/discount",
    response_model=schemas.DiscountResult,
    tags=["Pricing"],
    summary="Preview Discount"
)
async def calculate_discount_endpoint(request_data: schemas.DiscountRequest, request: Request):
    """Checks discount eligibility for a subtotal the caller already has."""
    try:
        return await _dispatcher(request).compute_discount(
            request_data.subtotal, request_data.percentage, request_data.minimum_order_amount
        )
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CalculationError as e:
        logger.exception(f"Error calculating discount: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during discount calculation."
        )


@app.post(
    "/calculate/tax",
    response_model=schemas.TaxResult,
    tags=["Pricing"],
    summary="Calculate Tax"
)
async def calculate_tax_endpoint(request_data: schemas.TaxRequest, request: Request):
    try:
        return await _dispatcher(request).compute_tax(request_data.amount, request_data.tax_rate)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CalculationError as e:
        logger.exception(f"Error calculating tax: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during tax calculation."
        )
