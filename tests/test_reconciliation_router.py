"""Tests for the reconciliation API router with the store layer mocked."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
import pytest_asyncio

from rapprochement.database import get_db
from rapprochement.main import app
from rapprochement.services.annual_ledger import AnnualLedger, LedgerTotals
from rapprochement.services.domain import (
    CreditNoteOffset,
    InverseLink,
    InvoiceDirection,
    MatchReport,
    ReconciliationResult,
    ResultStatus,
    ScoredCandidate,
)
from rapprochement.services.engine import ReconciliationRun
from rapprochement.services.errors import (
    ClaimConflict,
    CreditNoteError,
    EngineError,
    ErrorKind,
    InverseLinkError,
    ReconciliationError,
)
from rapprochement.services.store import DocumentNotFound, LineNotFound
from tests.factories import InvoiceFactory

STORE = "rapprochement.routers.reconciliation.store"


@pytest_asyncio.fixture
async def api(client):
    session = MagicMock()
    session.rollback = AsyncMock()

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    yield client, session
    app.dependency_overrides.pop(get_db, None)


def _matched(numero_ligne: str = "1") -> ReconciliationResult:
    invoice = InvoiceFactory.build(id="7", number="F-7")
    return ReconciliationResult(
        numero_ligne=numero_ligne,
        status=ResultStatus.MATCHED,
        score=80,
        documents=(invoice.document(),),
        matched_amount=Decimal("100.00"),
        rule_ids=("1", "2"),
    )


@pytest.mark.asyncio
async def test_run_reports_counts_and_errors(api) -> None:
    client, _ = api
    run = ReconciliationRun(
        results=[_matched("1"), ReconciliationResult(numero_ligne="2", status=ResultStatus.UNCERTAIN, score=40)],
        errors=[EngineError(kind=ErrorKind.AMBIGUOUS_MATCH, message="tie", numero_ligne="2")],
        inverse_links=[InverseLink(source_line="3", target_line="4", solde=Decimal("0"), balanced=True)],
    )
    with patch(f"{STORE}.execute_reconciliation", AsyncMock(return_value=run)) as execute:
        response = await client.post(
            "/reconciliation/run",
            json={"period_start": "2024-01-01", "period_end": "2024-01-31"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["matched"] == 1
    assert data["uncertain"] == 1
    assert data["inverse_links"] == 1
    assert data["errors"][0]["kind"] == "ambiguous_match"
    assert execute.await_args.args[1:] == (date(2024, 1, 1), date(2024, 1, 31))


@pytest.mark.asyncio
async def test_run_rejects_inverted_period(api) -> None:
    client, _ = api
    response = await client.post(
        "/reconciliation/run",
        json={"period_start": "2024-02-01", "period_end": "2024-01-01"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_results_returns_active_rows(api) -> None:
    client, _ = api
    row = MagicMock(
        id=uuid4(),
        numero_ligne="1",
        status=ResultStatus.UNMATCHED,
        score=0,
        documents=[],
        matched_amount=Decimal("0.00"),
        residual_amount=None,
        notes=None,
        manual=False,
        rule_ids=[],
        inverse_of=None,
        partner=None,
        version=2,
        superseded_by_id=None,
        created_at=None,
        updated_at=None,
    )
    with patch(f"{STORE}.list_results", AsyncMock(return_value=([row], 1))) as list_results:
        response = await client.get("/reconciliation/results", params={"status": "unmatched"})

    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["version"] == 2
    assert list_results.await_args.kwargs["status"] == ResultStatus.UNMATCHED


@pytest.mark.asyncio
async def test_line_report(api) -> None:
    client, _ = api
    report = MatchReport(
        result=_matched(),
        candidates=(
            ScoredCandidate(
                candidate_id="invoice:7",
                score=80,
                rule_ids=("1", "2"),
                best_priority=1,
                amount=Decimal("100.00"),
                explains_amount=True,
            ),
        ),
    )
    with patch(f"{STORE}.line_report", AsyncMock(return_value=report)):
        response = await client.get("/reconciliation/lines/1/report")

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["status"] == "matched"
    assert data["result"]["documents"][0]["reference"] == "F-7"
    assert data["candidates"][0]["explains_amount"] is True


@pytest.mark.asyncio
async def test_unknown_line_is_404(api) -> None:
    client, _ = api
    with patch(f"{STORE}.line_report", AsyncMock(side_effect=LineNotFound("99"))):
        response = await client.get("/reconciliation/lines/99/report")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_link_conflict_rolls_back(api) -> None:
    client, session = api
    with patch(f"{STORE}.record_manual_link", AsyncMock(side_effect=ClaimConflict("held by 2"))):
        response = await client.post(
            "/reconciliation/lines/1/manual-link",
            json={"candidate_ids": ["invoice:7"]},
        )

    assert response.status_code == 409
    assert response.json()["detail"] == "held by 2"
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_manual_link_bad_reference_is_400(api) -> None:
    client, _ = api
    with patch(f"{STORE}.record_manual_link", AsyncMock(side_effect=ReconciliationError("bad ref"))):
        response = await client.post(
            "/reconciliation/lines/1/manual-link",
            json={"candidate_ids": ["nope"]},
        )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_link_requires_documents(api) -> None:
    client, _ = api
    response = await client.post("/reconciliation/lines/1/manual-link", json={"candidate_ids": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_manual_link_success(api) -> None:
    client, _ = api
    result = ReconciliationResult(
        numero_ligne="1",
        status=ResultStatus.MATCHED,
        score=100,
        documents=_matched().documents,
        matched_amount=Decimal("100.00"),
        manual=True,
        notes="checked",
    )
    with patch(f"{STORE}.record_manual_link", AsyncMock(return_value=result)) as record:
        response = await client.post(
            "/reconciliation/lines/1/manual-link",
            json={"candidate_ids": ["invoice:7"], "notes": "checked"},
        )

    assert response.status_code == 200
    assert response.json()["manual"] is True
    assert record.await_args.args[1:] == ("1", ["invoice:7"], "checked")


@pytest.mark.asyncio
async def test_aggregate_line(api) -> None:
    client, _ = api
    with patch(f"{STORE}.aggregate_line", AsyncMock(return_value=MatchReport(result=_matched()))):
        response = await client.post("/reconciliation/lines/1/aggregate")
    assert response.status_code == 200
    assert response.json()["result"]["numero_ligne"] == "1"


@pytest.mark.asyncio
async def test_inverse_link_conflict(api) -> None:
    client, _ = api
    with patch(f"{STORE}.create_inverse_link", AsyncMock(side_effect=InverseLinkError("matched"))):
        response = await client.post(
            "/reconciliation/inverse-links",
            json={"source_line": "1", "target_line": "2"},
        )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_inverse_link_same_line_rejected(api) -> None:
    client, _ = api
    response = await client.post(
        "/reconciliation/inverse-links",
        json={"source_line": "1", "target_line": "1"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unbalanced_inverse_link_is_returned(api) -> None:
    client, _ = api
    link = InverseLink(source_line="1", target_line="2", solde=Decimal("0.50"), balanced=False, manual=True)
    with patch(f"{STORE}.create_inverse_link", AsyncMock(return_value=link)):
        response = await client.post(
            "/reconciliation/inverse-links",
            json={"source_line": "1", "target_line": "2"},
        )

    assert response.status_code == 200
    assert response.json()["balanced"] is False
    assert Decimal(response.json()["solde"]) == Decimal("0.50")


@pytest.mark.asyncio
async def test_list_credit_notes(api) -> None:
    client, _ = api
    note = InvoiceFactory.build(id="2", number="AV-2", direction=InvoiceDirection.SALE, total_ttc=Decimal("-40.00"))
    with patch(f"{STORE}.list_credit_notes", AsyncMock(return_value=[note])) as listed:
        response = await client.get("/reconciliation/credit-notes", params={"search": "AV"})

    assert response.status_code == 200
    assert response.json()[0]["number"] == "AV-2"
    assert Decimal(response.json()[0]["total_ttc"]) == Decimal("-40.00")
    listed.assert_awaited_once()
    assert listed.await_args.args[1] == "AV"


@pytest.mark.asyncio
async def test_link_credit_notes_returns_the_offset(api) -> None:
    client, _ = api
    invoice = InvoiceFactory.build(id="1", direction=InvoiceDirection.SALE, total_ttc=Decimal("100.00"))
    note = InvoiceFactory.build(id="2", direction=InvoiceDirection.SALE, total_ttc=Decimal("-90.00"))
    built = CreditNoteOffset(
        reference="AVOIR-1", invoice=invoice, credit_notes=(note,), solde=Decimal("10.00"), balanced=False
    )
    with patch(f"{STORE}.link_credit_notes", AsyncMock(return_value=built)):
        response = await client.post("/reconciliation/invoices/1/credit-notes", json={"credit_note_ids": ["2"]})

    assert response.status_code == 200
    body = response.json()
    assert body["reference"] == "AVOIR-1"
    assert body["credit_note_ids"] == ["2"]
    assert body["balanced"] is False
    assert Decimal(body["solde"]) == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (ClaimConflict("already reconciled"), 409),
        (DocumentNotFound("missing"), 404),
        (CreditNoteError("not a credit note"), 400),
    ],
)
async def test_link_credit_notes_errors(api, error, expected) -> None:
    client, session = api
    with patch(f"{STORE}.link_credit_notes", AsyncMock(side_effect=error)):
        response = await client.post("/reconciliation/invoices/1/credit-notes", json={"credit_note_ids": ["2"]})

    assert response.status_code == expected
    session.rollback.assert_awaited()


@pytest.mark.asyncio
async def test_link_credit_notes_needs_a_credit_note(api) -> None:
    client, _ = api
    response = await client.post("/reconciliation/invoices/1/credit-notes", json={"credit_note_ids": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_annual_ledger_unknown_sort_is_400(api) -> None:
    client, _ = api
    with patch(f"{STORE}.load_annual_ledger", AsyncMock(side_effect=ValueError("Unknown sort column 'x'"))):
        response = await client.get("/reconciliation/annual-ledger", params={"year": 2024, "sort": "x"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_annual_ledger(api) -> None:
    client, _ = api
    zero = Decimal("0.00")
    ledger = AnnualLedger(year=2024, rows=[], totals=LedgerTotals(0, zero, zero, zero, zero, zero))
    with patch(f"{STORE}.load_annual_ledger", AsyncMock(return_value=ledger)) as load:
        response = await client.get(
            "/reconciliation/annual-ledger",
            params={"year": 2024, "partner": "ACME", "descending": "true"},
        )

    assert response.status_code == 200
    assert response.json()["year"] == 2024
    assert load.await_args.kwargs["partner"] == "ACME"
    assert load.await_args.kwargs["descending"] is True


@pytest.mark.asyncio
async def test_rule_validation_accepts_valid_rule(api) -> None:
    client, _ = api
    response = await client.post(
        "/reconciliation/rules/validate",
        json={"name": "Montant exact", "kind": "AMOUNT", "condition": {"tolerance": "0.02"}},
    )

    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["rule"]["score"] == 10


@pytest.mark.asyncio
async def test_rule_validation_reports_errors(api) -> None:
    client, _ = api
    response = await client.post(
        "/reconciliation/rules/validate",
        json={"kind": "DATE", "condition": {"window_days": -3}},
    )

    assert response.status_code == 400
    assert isinstance(response.json()["detail"], list)
