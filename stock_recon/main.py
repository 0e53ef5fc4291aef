from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from stock_recon.logging_config import configure_logging
from stock_recon.routers import stock

configure_logging()

app = FastAPI(title='Stock Reconciliation Engine')

app.include_router(stock.router)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok'


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
