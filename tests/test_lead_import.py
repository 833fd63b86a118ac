import io

import pytest
from httpx import AsyncClient
from openpyxl import Workbook, load_workbook

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _workbook_bytes(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


@pytest.mark.asyncio
async def test_download_template(client: AsyncClient, admin_headers) -> None:
    response = await client.get("/upload-leads/template", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX_MEDIA_TYPE

    wb = load_workbook(io.BytesIO(response.content))
    headers = [c.value for c in wb["Leads"][1]]
    assert headers == ["name", "email", "phone", "education", "lead_source"]
    sources = [row[0].value for row in wb["Lead Sources"].iter_rows(min_row=2)]
    assert "website" in sources
    assert "social-media" in sources


@pytest.mark.asyncio
async def test_upload_reports_failed_rows(workflow, client: AsyncClient, admin_headers) -> None:
    await workflow.create_lead(name="Existing", email="existing@example.com")
    content = _workbook_bytes(
        [
            ["Name", "Email", "Phone", "Education", "Lead Source"],
            ["Asha", "asha@x.com", 9999999999, "B.Sc", "Referral"],
            ["No Mail", "not-an-email", "1234", None, None],
            ["Asha Twin", "ASHA@x.com", "5555", None, None],
            ["Existing Again", "existing@example.com", "6666", None, None],
            [None, None, None, None, None],
            ["Ravi", "ravi@example.com", "7777777777", None, "campus"],
        ]
    )

    response = await client.post(
        "/upload-leads",
        files={"file": ("leads.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["success_count"] == 2
    assert data["failed_count"] == 3
    failed = {f["row"]: f for f in data["failed_leads"]}
    assert set(failed) == {3, 4, 5}
    assert failed[3]["reason"].startswith("email")
    assert "Duplicate email in upload" in failed[4]["reason"]
    assert "already exists" in failed[5]["reason"]

    leads = await client.get("/leads", params={"search": "asha@x.com"}, headers=admin_headers)
    asha = leads.json()["data"][0]
    assert asha["phone"] == "9999999999"
    assert asha["lead_source"] == "referral"
    assert asha["registration_fee_status"] == "PENDING"


@pytest.mark.asyncio
async def test_upload_rejects_non_excel(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/upload-leads",
        files={"file": ("leads.csv", b"name,email,phone\n", "text/csv")},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "INVALID_ARGUMENT"


@pytest.mark.asyncio
async def test_upload_rejects_corrupt_file(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/upload-leads",
        files={"file": ("leads.xlsx", b"definitely not a zip", XLSX_MEDIA_TYPE)},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_upload_requires_columns(client: AsyncClient, admin_headers) -> None:
    content = _workbook_bytes([["name", "phone"], ["Asha", "9999999999"]])
    response = await client.post(
        "/upload-leads",
        files={"file": ("leads.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert "Missing required column: email" in response.json()["detail"]["message"]


@pytest.mark.asyncio
async def test_upload_row_limit(client: AsyncClient, admin_headers) -> None:
    rows = [["name", "email", "phone"]]
    rows += [[f"Lead {i}", f"lead{i}@example.com", str(1000 + i)] for i in range(501)]
    response = await client.post(
        "/upload-leads",
        files={"file": ("leads.xlsx", _workbook_bytes(rows), XLSX_MEDIA_TYPE)},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert "Maximum 500" in response.json()["detail"]["message"]
