import base64
import io
from datetime import datetime

import pytest
from bson import ObjectId

from tests.conftest import auth_header

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


def upload_data_url(client, token=None, **extra):
    payload = {"image": PNG_DATA_URL, "name": "logo.png"}
    payload.update(extra)
    headers = auth_header(token) if token else {}
    return client.post("/api/uploads", json=payload, headers=headers)


def test_visitor_upload_is_stored_and_served(client):
    response = upload_data_url(client)

    assert response.status_code == 201
    upload = response.get_json()["upload"]
    assert upload["uploadedBy"] == "visitor"
    assert upload["userId"] is None
    assert upload["size"] == len(PNG_BYTES)
    assert "data" not in upload

    served = client.get(upload["url"])
    assert served.status_code == 200
    assert served.mimetype == "image/png"
    assert served.data == PNG_BYTES


def test_multipart_upload_records_user_and_cart_flag(client, user_token):
    response = client.post(
        "/api/uploads",
        data={"image": (io.BytesIO(PNG_BYTES), "design.png"), "inCart": "true"},
        content_type="multipart/form-data",
        headers=auth_header(user_token),
    )

    assert response.status_code == 201
    upload = response.get_json()["upload"]
    assert upload["uploadedBy"] == "customer@example.com"
    assert upload["userId"] is not None
    assert upload["inCart"] is True
    assert upload["originalName"] == "design.png"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"image": "not a data url"},
        {"image": "data:text/plain;base64,aGVsbG8="},
        {"image": "data:image/png;base64,@@@"},
    ],
)
def test_invalid_uploads_are_rejected(client, payload):
    assert client.post("/api/uploads", json=payload).status_code == 400


def test_unsupported_file_extension_is_rejected(client):
    response = client.post(
        "/api/uploads",
        data={"image": (io.BytesIO(b"text"), "notes.txt")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 400


def test_admin_upload_filters(client, db, user_token, admin_token):
    upload_data_url(client, name="visitor-art.png")
    upload_data_url(client, token=user_token, name="customer-logo.png")
    db.uploads.update_one({"originalName": "customer-logo.png"}, {"$set": {"inOrder": True}})

    def fetch(query):
        response = client.get(f"/api/admin/uploads?{query}", headers=auth_header(admin_token))
        assert response.status_code == 200
        return response.get_json()

    assert fetch("")["total"] == 2
    assert [image["originalName"] for image in fetch("visitorOnly=true")["images"]] == [
        "visitor-art.png"
    ]
    assert [image["originalName"] for image in fetch("userOnly=true")["images"]] == [
        "customer-logo.png"
    ]
    assert fetch("inOrder=true")["total"] == 1
    assert fetch("search=CUSTOMER@example")["total"] == 1
    assert fetch("sortBy=size&sortOrder=asc&limit=1")["pages"] == 2
    assert all("data" not in image for image in fetch("")["images"])


def test_admin_upload_date_filter(client, db, admin_token):
    db.uploads.insert_many(
        [
            {"data": PNG_BYTES, "contentType": "image/png", "originalName": "old.png",
             "size": 3, "userId": None, "uploadedBy": "visitor", "createdAt": datetime(2024, 1, 5)},
            {"data": PNG_BYTES, "contentType": "image/png", "originalName": "new.png",
             "size": 3, "userId": None, "uploadedBy": "visitor", "createdAt": datetime(2024, 2, 5)},
        ]
    )

    response = client.get(
        "/api/admin/uploads?startDate=2024-02-01&endDate=2024-02-05",
        headers=auth_header(admin_token),
    )

    assert [image["originalName"] for image in response.get_json()["images"]] == ["new.png"]


def test_upload_details_include_referencing_orders(client, db, admin_token):
    upload_id = ObjectId(upload_data_url(client).get_json()["upload"]["_id"])
    db.orders.insert_one(
        {
            "user": ObjectId(),
            "products": [{"product": "box", "quantity": 1, "customization": {"customImage": upload_id}}],
            "totalAmount": 9.0,
            "status": "pending",
            "createdAt": datetime.utcnow(),
        }
    )

    response = client.get(
        f"/api/admin/uploads/{upload_id}/details", headers=auth_header(admin_token)
    )

    details = response.get_json()
    assert details["orderCount"] == 1
    assert details["orders"][0]["totalAmount"] == 9.0
    assert details["cartCount"] == 0


def test_admin_download_and_delete(client, admin_token):
    upload_id = upload_data_url(client).get_json()["upload"]["_id"]

    download = client.get(f"/api/admin/uploads/download/{upload_id}?token={admin_token}")
    deleted = client.delete(f"/api/admin/uploads/{upload_id}", headers=auth_header(admin_token))

    assert download.status_code == 200
    assert download.data == PNG_BYTES
    assert "logo.png" in download.headers["Content-Disposition"]
    assert deleted.status_code == 200
    assert client.get(f"/api/uploads/{upload_id}").status_code == 404


def test_media_library_pages_images_as_data_urls(client, admin_token):
    for index in range(13):
        upload_data_url(client, name=f"file-{index}.png")

    first = client.get("/api/images?page=1", headers=auth_header(admin_token)).get_json()
    second = client.get("/api/images?page=2", headers=auth_header(admin_token)).get_json()

    assert first["totalPages"] == 2
    assert len(first["images"]) == 12
    assert len(second["images"]) == 1
    assert first["images"][0]["data"] == PNG_DATA_URL


def test_media_library_delete(client, admin_token):
    upload_id = upload_data_url(client).get_json()["upload"]["_id"]

    response = client.delete(f"/api/images/{upload_id}", headers=auth_header(admin_token))

    assert response.status_code == 200
    assert client.delete(f"/api/images/{upload_id}", headers=auth_header(admin_token)).status_code == 404


def test_upload_admin_routes_reject_customers(client, user_token):
    headers = auth_header(user_token)

    assert client.get("/api/admin/uploads", headers=headers).status_code == 403
    assert client.get("/api/images", headers=headers).status_code == 403


@pytest.mark.parametrize("page", ["inf", "1e400", "-inf", "nan", "1e300"])
def test_upload_listings_clamp_unreadable_page_numbers(client, admin_token, page):
    upload_data_url(client)
    headers = auth_header(admin_token)

    admin_listing = client.get(f"/api/admin/uploads?page={page}&limit={page}", headers=headers)
    media_listing = client.get(f"/api/images?page={page}", headers=headers)

    assert admin_listing.status_code == 200
    assert media_listing.status_code == 200
    assert 1 <= admin_listing.get_json()["page"] <= 10000
    assert 1 <= media_listing.get_json()["page"] <= 10000


def test_oversized_upload_returns_json_413(make_app):
    client = make_app(MAX_CONTENT_LENGTH=1024).test_client()

    response = client.post(
        "/api/uploads",
        data={"image": (io.BytesIO(PNG_BYTES * 200), "large.png")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 413
    assert response.get_json()["message"] == "Uploads are limited to 1 KB."
