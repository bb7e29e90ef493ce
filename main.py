import logging
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from identity import IdentityContext, IdentityRejected, resolve_identity
from orchestrator import LedgerOrchestrator
from periods import Period, resolve_period
from projections import TransactionFilters
from schemas import Outcome

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

STATUS_BY_ERROR_KIND = {
    "validation": 400,
    "not_found": 404,
    "consistency": 409,
    "infrastructure": 503,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_identity(authorization: Optional[str] = Header(default=None)) -> IdentityContext:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[len("bearer ") :].strip()
    try:
        return resolve_identity(token)
    except IdentityRejected as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_ledger(
    db: Session = Depends(get_db), identity: IdentityContext = Depends(get_identity)
) -> LedgerOrchestrator:
    return LedgerOrchestrator(db, identity)


def respond(outcome: Outcome, success_status: int = 200) -> JSONResponse:
    if outcome.success:
        status = success_status
    else:
        status = STATUS_BY_ERROR_KIND.get(outcome.error_kind or "", 500)
    return JSONResponse(status_code=status, content=outcome.as_dict())


def period_from_request(request: Request) -> Optional[Period]:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    def int_param(name: str) -> Optional[int]:
        raw = request.query_params.get(name)
        if raw in (None, ""):
            return None
        try:
            return int(raw)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail=f"Invalid {name}: {raw}"
            ) from exc

    return TransactionFilters(
        account_id=int_param("account_id"),
        period=period_from_request(request),
        tag_id=int_param("tag_id"),
    )


@app.get("/api/dashboard")
def dashboard(request: Request, ledger: LedgerOrchestrator = Depends(get_ledger)):
    filters = filters_from_request(request)

    def read() -> dict[str, Any]:
        queries = ledger.queries
        return {
            "net_worth": str(queries.net_worth()),
            "accounts": [a.model_dump(mode="json") for a in queries.accounts()],
            "summary": queries.summary(filters).model_dump(mode="json"),
            "recent_transactions": [
                t.model_dump(mode="json") for t in queries.transactions(filters, limit=5)
            ],
        }

    return respond(ledger.query("dashboard", read))


@app.get("/api/accounts")
def list_accounts(ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.query("list_accounts", ledger.queries.accounts))


@app.post("/api/accounts")
def create_account(
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.create_account(payload), success_status=201)


@app.get("/api/accounts/{account_id}")
def get_account(account_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.query("get_account", lambda: ledger.queries.account(account_id)))


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.update_account(account_id, payload))


@app.delete("/api/accounts/{account_id}")
def delete_account(account_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.delete_account(account_id))


@app.post("/api/accounts/{account_id}/rebuild-balance")
def rebuild_balance(account_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.rebuild_balance(account_id))


@app.get("/api/balance-audit")
def balance_audit(ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.query("balance_audit", ledger.balances.audit))


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    filters = filters_from_request(request)
    return respond(
        ledger.query(
            "list_transactions",
            lambda: ledger.queries.transactions(filters, limit=limit, offset=offset),
        )
    )


@app.post("/api/transactions")
def create_transaction(
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.create_transaction(payload), success_status=201)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)
):
    return respond(
        ledger.query(
            "get_transaction", lambda: ledger.queries.transaction(transaction_id)
        )
    )


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.update_transaction(transaction_id, payload))


@app.put("/api/transactions/{transaction_id}/tags")
def set_transaction_tags(
    transaction_id: int,
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.set_transaction_tags(transaction_id, payload))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)
):
    return respond(ledger.delete_transaction(transaction_id))


@app.get("/api/summary")
def summary(request: Request, ledger: LedgerOrchestrator = Depends(get_ledger)):
    filters = filters_from_request(request)
    return respond(ledger.query("summary", lambda: ledger.queries.summary(filters)))


@app.get("/api/tags")
def list_tags(ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.query("list_tags", ledger.queries.tags))


@app.post("/api/tags")
def create_tag(
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.create_tag(payload), success_status=201)


@app.patch("/api/tags/{tag_id}")
def update_tag(
    tag_id: int,
    payload: dict[str, Any] = Body(...),
    ledger: LedgerOrchestrator = Depends(get_ledger),
):
    return respond(ledger.update_tag(tag_id, payload))


@app.delete("/api/tags/{tag_id}")
def delete_tag(tag_id: int, ledger: LedgerOrchestrator = Depends(get_ledger)):
    return respond(ledger.delete_tag(tag_id))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
