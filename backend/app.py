import base64
import binascii
import math
import os
import re
import secrets
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import bcrypt
import resend
import stripe
from bson import Binary, ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
    verify_jwt_in_request,
)
from flask_pymongo import PyMongo
from pymongo.errors import DuplicateKeyError
from werkzeug.utils import secure_filename

from backend.mockups import (
    PROVIDER_CLASSES,
    MockupError,
    build_providers,
    resolve_vendor_id,
)
from backend.reports import (
    apply_catalog_details,
    build_sales_report,
    render_sales_csv,
    safe_float,
    safe_positive_int,
)

load_dotenv()

DEFAULT_DATABASE_NAME = "packaging_store"


def create_app(config: Optional[Dict] = None, mongo_client=None) -> Flask:
    """Create and configure the Flask application.

    ``config`` overrides values read from the environment. ``mongo_client``
    replaces the Flask-PyMongo connection, which lets tests run against an
    in-memory client.
    """
    app = Flask(__name__, static_folder=None)

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=1)
    # Report and upload downloads are opened in a new tab with ?token=...
    app.config["JWT_TOKEN_LOCATION"] = ["headers", "query_string"]
    app.config["JWT_QUERY_STRING_NAME"] = "token"
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", f"mongodb://localhost:27017/{DEFAULT_DATABASE_NAME}"
    )
    app.config["ADMIN_CODE"] = (os.getenv("ADMIN_CODE") or "").strip()
    app.config["STRIPE_SECRET_KEY"] = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    app.config["FRONTEND_BUILD_DIR"] = os.getenv(
        "FRONTEND_BUILD_DIR",
        os.path.join(app.root_path, "..", "frontend", "build"),
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_ALLOWED_EXTENSIONS"] = {"png", "jpg", "jpeg", "gif", "webp"}
    app.config["UPLOAD_ALLOWED_TYPES"] = {
        "image/png",
        "image/jpeg",
        "image/gif",
        "image/webp",
    }
    app.config["PRINTFUL_API_KEY"] = os.getenv("PRINTFUL_API_KEY", "")
    app.config["PLACEIT_API_KEY"] = os.getenv("PLACEIT_API_KEY", "")
    app.config["TEESPACE_API_KEY"] = os.getenv("TEESPACE_API_KEY", "")
    app.config["MOCKUP_REQUEST_TIMEOUT"] = os.getenv("MOCKUP_REQUEST_TIMEOUT", "30")
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["CONTACT_RECIPIENT"] = (os.getenv("CONTACT_RECIPIENT") or "").strip()
    app.config["CONTACT_SENDER"] = (
        os.getenv("CONTACT_SENDER", "contact@packaging.store")
        or "contact@packaging.store"
    )
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()

    if config:
        app.config.update(config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # --- Initialize extensions ---
    allowed_origins = []
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    JWTManager(app)
    if mongo_client is not None:
        db = mongo_client.get_database(
            app.config.get("MONGO_DBNAME", DEFAULT_DATABASE_NAME)
        )
    else:
        db = PyMongo(app).db
        if db is None:
            raise RuntimeError("MONGO_URI must include a database name.")

    try:
        db.users.create_index("email", unique=True)
        db.uploads.create_index([("createdAt", -1)])
        db.orders.create_index([("createdAt", -1)])
    except Exception as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)

    app.extensions["mockup_providers"] = build_providers(app.config)

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    data_url_regex = re.compile(r"^data:([A-Za-z-+/]+);base64,(.+)$", re.DOTALL)
    truthy_values = {"1", "true", "yes", "on"}

    MEDIA_PAGE_SIZE = 12
    UPLOADS_MAX_PAGE_SIZE = 100
    MAX_PAGE_NUMBER = 10000
    MAX_LINE_QUANTITY = 10000
    REPORT_DEFAULT_DAYS = 30
    UPLOAD_SORT_FIELDS = {"date": "createdAt", "user": "uploadedBy", "size": "size"}

    # --- Helpers ---

    def normalize_email(value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = normalize_email(value)
        return bool(normalized and email_regex.match(normalized))

    def is_truthy(value) -> bool:
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() in truthy_values

    def is_blank(value) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())

    def get_json_payload() -> Dict:
        # Only JSON objects are accepted as request bodies.
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def format_datetime(value) -> Optional[str]:
        if isinstance(value, datetime):
            return value.isoformat() + "Z"
        return None

    def to_json_safe(value):
        if isinstance(value, ObjectId):
            return str(value)
        if isinstance(value, datetime):
            return format_datetime(value)
        if isinstance(value, dict):
            return {key: to_json_safe(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [to_json_safe(item) for item in value]
        return value

    def parse_object_id(value):
        try:
            return ObjectId(str(value))
        except (InvalidId, TypeError):
            return None

    def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
        if not value:
            return None
        candidate = str(value).strip()
        if not candidate:
            return None
        normalized = candidate.replace("Z", "+00:00")
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
            normalized = f"{candidate}T00:00:00"
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
        if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
            return parsed + timedelta(days=1)
        return parsed

    def get_current_user():
        object_id = parse_object_id(get_jwt_identity())
        if object_id is None:
            return None
        return db.users.find_one({"_id": object_id})

    def require_admin_user():
        current_user = get_current_user()
        if not current_user or not current_user.get("isAdmin"):
            return (
                None,
                (
                    jsonify(
                        {"message": "You need additional permissions to perform this action."}
                    ),
                    403,
                ),
            )
        return current_user, None

    def fetch_document(collection, document_id: str, label: str):
        object_id = parse_object_id(document_id)
        if object_id is None:
            return None, (jsonify({"message": f"Invalid {label} identifier."}), 400)

        document = collection.find_one({"_id": object_id})
        if not document:
            return None, (jsonify({"message": f"{label.capitalize()} not found."}), 404)

        return document, None

    def serialize_user(user_document) -> Dict:
        return {
            "_id": str(user_document.get("_id")),
            "email": user_document.get("email", ""),
            "isAdmin": bool(user_document.get("isAdmin")),
            "created_at": format_datetime(user_document.get("created_at")),
        }

    def serialize_template(template_document) -> Dict:
        content_type = template_document.get("contentType", "application/octet-stream")
        encoded = base64.b64encode(bytes(template_document.get("data") or b"")).decode()
        return {
            "_id": str(template_document.get("_id")),
            "data": f"data:{content_type};base64,{encoded}",
        }

    def serialize_product(product_document, templates_by_id: Dict) -> Dict:
        serialized = to_json_safe(dict(product_document))
        serialized["_id"] = str(product_document.get("_id"))
        serialized["templates"] = [
            templates_by_id[template_id]
            for template_id in product_document.get("templates") or []
            if template_id in templates_by_id
        ]
        return serialized

    def serialize_products(product_documents) -> List[Dict]:
        """Serialize products with their template images inlined as data URLs."""
        template_ids = {
            template_id
            for document in product_documents
            for template_id in document.get("templates") or []
            if isinstance(template_id, ObjectId)
        }
        templates_by_id = {}
        if template_ids:
            for template in db.product_templates.find({"_id": {"$in": list(template_ids)}}):
                templates_by_id[template["_id"]] = serialize_template(template)
        return [
            serialize_product(document, templates_by_id) for document in product_documents
        ]

    def read_customization_options(raw_options) -> Dict[str, bool]:
        options = {"allowCustomImage": True, "allowCustomText": True}
        if isinstance(raw_options, dict):
            for key in options:
                if key in raw_options:
                    options[key] = is_truthy(raw_options[key])
        return options

    def serialize_order(order_document) -> Dict:
        serialized = to_json_safe(dict(order_document))
        serialized["_id"] = str(order_document.get("_id"))
        return serialized

    def upload_url(upload_id) -> str:
        return f"/api/uploads/{upload_id}"

    def serialize_upload(upload_document) -> Dict:
        upload_id = str(upload_document.get("_id"))
        user_id = upload_document.get("userId")
        return {
            "_id": upload_id,
            "originalName": upload_document.get("originalName", ""),
            "contentType": upload_document.get("contentType", ""),
            "mimetype": upload_document.get("contentType", ""),
            "size": int(upload_document.get("size", 0) or 0),
            "userId": str(user_id) if user_id else None,
            "uploadedBy": upload_document.get("uploadedBy", "visitor"),
            "inCart": bool(upload_document.get("inCart")),
            "inOrder": bool(upload_document.get("inOrder")),
            "createdAt": format_datetime(upload_document.get("createdAt")),
            "path": upload_id,
            "url": upload_url(upload_id),
        }

    def serialize_media_image(upload_document) -> Dict:
        content_type = upload_document.get("contentType", "application/octet-stream")
        encoded = base64.b64encode(bytes(upload_document.get("data") or b"")).decode()
        return {
            "_id": str(upload_document.get("_id")),
            "contentType": content_type,
            "originalName": upload_document.get("originalName", ""),
            "createdAt": format_datetime(upload_document.get("createdAt")),
            "data": f"data:{content_type};base64,{encoded}",
        }

    def allowed_image_extension(filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        if not extension:
            return False
        return extension in app.config["UPLOAD_ALLOWED_EXTENSIONS"]

    def decode_image_data_url(raw_value):
        """Return ``(payload_bytes, content_type, error)`` for a base64 image data URL."""
        matches = data_url_regex.match(str(raw_value or "").strip())
        if not matches:
            return None, None, "The image must be a base64 data URL."

        content_type = matches.group(1).lower()
        if content_type not in app.config["UPLOAD_ALLOWED_TYPES"]:
            return (
                None,
                None,
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files.",
            )
        try:
            data = base64.b64decode(matches.group(2), validate=True)
        except (binascii.Error, ValueError):
            return None, None, "The image data could not be decoded."
        return data, content_type, None

    def read_upload_from_request():
        """Return ``(payload_bytes, content_type, original_name, error)``."""
        image_file = request.files.get("image") if request.files else None
        if image_file and getattr(image_file, "filename", ""):
            original_filename = secure_filename(image_file.filename)
            if not original_filename:
                return None, None, None, "Please choose a valid file name."
            if not allowed_image_extension(original_filename):
                return (
                    None,
                    None,
                    None,
                    "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files.",
                )
            data = image_file.read()
            content_type = image_file.mimetype or "application/octet-stream"
            if content_type not in app.config["UPLOAD_ALLOWED_TYPES"]:
                extension = os.path.splitext(original_filename)[1].lower().lstrip(".")
                content_type = "image/jpeg" if extension == "jpg" else f"image/{extension}"
            return data, content_type, original_filename, None

        payload = get_json_payload()
        raw_image = str(payload.get("image") or "").strip()
        if not raw_image:
            return None, None, None, "An image file is required."

        data, content_type, decode_error = decode_image_data_url(raw_image)
        if decode_error:
            return None, None, None, decode_error

        original_name = secure_filename(str(payload.get("name") or "")) or (
            f"design.{content_type.split('/')[-1]}"
        )
        return data, content_type, original_name, None

    def send_email_via_resend(payload: Dict[str, object], api_key: str):
        configured_api_key = (api_key or "").strip()
        if not configured_api_key:
            return False, "Resend API key is not configured."

        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = configured_api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)

        return True, None

    def send_contact_email(message_document: Dict):
        recipient = app.config.get("CONTACT_RECIPIENT")
        if not recipient:
            return False, "Contact recipient is not configured."

        lines = [
            f"From: {message_document['name']} <{message_document['email']}>",
        ]
        if message_document.get("phone"):
            lines.append(f"Phone: {message_document['phone']}")
        if message_document.get("company"):
            lines.append(f"Company: {message_document['company']}")
        lines.extend(["", message_document["message"]])

        payload: Dict[str, object] = {
            "from": f"Packaging Store <{app.config['CONTACT_SENDER']}>",
            "to": [recipient],
            "reply_to": message_document["email"],
            "subject": f"New contact message from {message_document['name']}",
            "text": "\n".join(lines),
        }
        return send_email_via_resend(payload, app.config.get("RESEND_API_KEY", ""))

    def create_payment_intent(amount_cents: int):
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency="usd",
                api_key=app.config.get("STRIPE_SECRET_KEY") or None,
            )
        except stripe.StripeError as exc:
            app.logger.error("Stripe payment intent failed: %s", exc)
            return jsonify({"error": str(exc)}), 500

        return jsonify({"clientSecret": intent.client_secret})

    def normalize_order_line(line, product_cache: Dict[str, Optional[Dict]]):
        if not isinstance(line, dict):
            return None

        product_identifier = line.get("product") or line.get("productId") or line.get("id")
        product_id = str(product_identifier or "").strip()
        if not product_id:
            return None

        if product_id not in product_cache:
            object_id = parse_object_id(product_id)
            product_cache[product_id] = (
                db.products.find_one({"_id": object_id}) if object_id else None
            )
        product_document = product_cache[product_id] or {}

        quantity = min(
            safe_positive_int(line.get("quantity"), 1) or 1, MAX_LINE_QUANTITY
        )
        name = str(line.get("name") or product_document.get("name") or "").strip()
        price_value = safe_float(
            line.get("price", product_document.get("price")), 0.0
        )

        customization = line.get("customization")
        normalized_customization: Dict[str, object] = {}
        if isinstance(customization, dict):
            for key in ("template", "customImage", "preview"):
                if not customization.get(key):
                    continue
                object_id = parse_object_id(customization[key])
                if object_id:
                    normalized_customization[key] = object_id
            if customization.get("customText"):
                normalized_customization["customText"] = str(customization["customText"])

        return {
            "product": product_id,
            "name": name,
            "quantity": quantity,
            "price": round(price_value, 2),
            "customization": normalized_customization,
        }

    def resolve_report_range():
        now = datetime.utcnow()
        today = datetime(now.year, now.month, now.day)
        start = parse_iso_date(request.args.get("startDate")) or (
            today - timedelta(days=REPORT_DEFAULT_DAYS)
        )
        end = parse_iso_date(request.args.get("endDate"), end_of_day=True) or (
            today + timedelta(days=1)
        )
        return start, end

    def load_sales_report(start: datetime, end: datetime) -> Dict:
        orders = db.orders.find({"createdAt": {"$gte": start, "$lt": end}})
        report = build_sales_report(orders, start, end)
        product_ids = [
            object_id
            for object_id in (
                parse_object_id(item["product"]["_id"]) for item in report["topProducts"]
            )
            if object_id
        ]
        catalog = {}
        if product_ids:
            catalog = {
                str(document["_id"]): document
                for document in db.products.find({"_id": {"$in": product_ids}})
            }
        apply_catalog_details(report, catalog)
        report["startDate"] = start.strftime("%Y-%m-%d")
        report["endDate"] = (end - timedelta(days=1)).strftime("%Y-%m-%d")
        return report

    # --- ERROR HANDLERS ---

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"message": "Resource not found."}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def handle_payload_too_large(error):
        limit = app.config.get("MAX_CONTENT_LENGTH") or 0
        if limit >= 1024 * 1024:
            readable_limit = f"{limit // (1024 * 1024)} MB"
        else:
            readable_limit = f"{max(1, limit // 1024)} KB"
        return (
            jsonify({"message": f"Uploads are limited to {readable_limit}."}),
            413,
        )

    # --- ROUTES ---

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # Register
    @app.route("/api/register", methods=["POST"])
    def register():
        payload = get_json_payload()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")
        admin_code = str(payload.get("adminCode") or "")

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        if db.users.find_one({"email": email}):
            return jsonify({"message": "An account with this email already exists."}), 400

        configured_code = app.config.get("ADMIN_CODE") or ""
        is_admin = bool(configured_code) and secrets.compare_digest(
            admin_code.encode("utf-8"), configured_code.encode("utf-8")
        )

        hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
        user_document = {
            "email": email,
            "password": hashed_pw,
            "isAdmin": is_admin,
            "created_at": datetime.utcnow(),
        }

        try:
            insert_result = db.users.insert_one(user_document)
        except DuplicateKeyError:
            return jsonify({"message": "An account with this email already exists."}), 400

        app.logger.info(
            "Registered user %s (admin=%s)", insert_result.inserted_id, is_admin
        )
        return jsonify({"message": "User registered successfully."}), 201

    # Login
    @app.route("/api/login", methods=["POST"])
    def login():
        payload = get_json_payload()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        user = db.users.find_one({"email": email})
        if not user or not bcrypt.checkpw(password.encode("utf-8"), bytes(user["password"])):
            return jsonify({"message": "Invalid credentials"}), 401

        user_id = str(user["_id"])
        token = create_access_token(
            identity=user_id,
            additional_claims={"userId": user_id, "isAdmin": bool(user.get("isAdmin"))},
        )
        return jsonify({"token": token, "user": serialize_user(user)})

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        return jsonify(serialize_products(list(db.products.find())))

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, load_error = fetch_document(db.products, product_id, "product")
        if load_error:
            return load_error
        return jsonify(serialize_products([product_document])[0])

    @app.route("/api/products", methods=["POST"])
    def create_product():
        payload = get_json_payload()

        missing = [
            field
            for field in ("name", "category", "image", "price")
            if is_blank(payload.get(field))
        ]
        if missing:
            return (
                jsonify({"message": f"Missing required fields: {', '.join(missing)}."}),
                400,
            )

        raw_templates = payload.get("templates")
        if raw_templates is None:
            raw_templates = []
        if not isinstance(raw_templates, list):
            return jsonify({"message": "Templates must be a list of image data URLs."}), 400

        template_documents = []
        for position, raw_template in enumerate(raw_templates, start=1):
            data, content_type, decode_error = decode_image_data_url(raw_template)
            if decode_error:
                return jsonify({"message": f"Template {position}: {decode_error}"}), 400
            template_documents.append(
                {
                    "data": Binary(data),
                    "contentType": content_type,
                    "createdAt": datetime.utcnow(),
                }
            )

        template_ids = []
        if template_documents:
            template_ids = list(
                db.product_templates.insert_many(template_documents).inserted_ids
            )

        product_document = {
            "name": payload["name"],
            "category": payload["category"],
            "image": payload["image"],
            "price": payload["price"],
            "templates": template_ids,
            "customizationOptions": read_customization_options(
                payload.get("customizationOptions")
            ),
            "created_at": datetime.utcnow(),
        }
        for optional_field in ("description", "printfulId", "placeItTemplateId", "teeSpaceId"):
            if not is_blank(payload.get(optional_field)):
                product_document[optional_field] = payload[optional_field]

        result = db.products.insert_one(product_document)
        app.logger.info(
            "Created product %s with %s template(s)", result.inserted_id, len(template_ids)
        )

        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_products([product_document])[0],
                }
            ),
            201,
        )

    # Payments
    @app.route("/api/payment", methods=["POST"])
    def create_payment():
        payload = get_json_payload()
        amount = payload.get("amount")

        if isinstance(amount, float) and amount.is_integer():
            amount = int(amount)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            return jsonify({"error": "Amount must be a positive whole number of cents."}), 400

        return create_payment_intent(amount)

    @app.route("/api/create-payment-intent", methods=["POST"])
    @jwt_required()
    def create_payment_from_dollars():
        payload = get_json_payload()
        amount = safe_float(payload.get("amount"), 0.0)
        amount_cents = int(round(amount * 100))
        if amount_cents <= 0:
            return jsonify({"error": "Amount must be greater than zero."}), 400

        return create_payment_intent(amount_cents)

    # Orders
    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        current_user = get_current_user()
        if not current_user:
            return jsonify({"message": "Please authenticate"}), 401

        payload = get_json_payload()
        raw_lines = payload.get("products")
        if not isinstance(raw_lines, list):
            return jsonify({"message": "An order needs a list of products."}), 400

        product_cache: Dict[str, Optional[Dict]] = {}
        lines = [
            line
            for line in (normalize_order_line(entry, product_cache) for entry in raw_lines)
            if line
        ]
        if not lines:
            return jsonify({"message": "No valid products in order."}), 400

        calculated_total = round(
            sum(line["price"] * line["quantity"] for line in lines), 2
        )
        total_amount = payload.get("totalAmount")
        total_value = (
            round(safe_float(total_amount, calculated_total), 2)
            if total_amount is not None
            else calculated_total
        )

        order_document = {
            "user": current_user["_id"],
            "products": lines,
            "totalAmount": total_value,
            "status": "pending",
            "paymentMethod": str(payload.get("paymentMethod") or "").strip(),
            "createdAt": datetime.utcnow(),
        }
        result = db.orders.insert_one(order_document)

        custom_images: List[ObjectId] = [
            line["customization"]["customImage"]
            for line in lines
            if line["customization"].get("customImage")
        ]
        if custom_images:
            db.uploads.update_many(
                {"_id": {"$in": custom_images}},
                {"$set": {"inOrder": True, "inCart": False}},
            )

        app.logger.info(
            "Created order %s for user %s", result.inserted_id, current_user["_id"]
        )
        return (
            jsonify(
                {
                    "message": "Order created successfully.",
                    "order": serialize_order(order_document),
                }
            ),
            201,
        )

    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        current_user = get_current_user()
        if not current_user:
            return jsonify({"message": "Please authenticate"}), 401

        query = {} if current_user.get("isAdmin") else {"user": current_user["_id"]}
        cursor = db.orders.find(query).sort([("createdAt", -1), ("_id", -1)])
        return jsonify({"orders": [serialize_order(document) for document in cursor]})

    # Reports
    @app.route("/api/reports/sales", methods=["GET"])
    @jwt_required()
    def sales_report():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        start, end = resolve_report_range()
        if end <= start:
            return jsonify({"message": "The end date must not be before the start date."}), 400

        return jsonify(load_sales_report(start, end))

    @app.route("/api/reports/sales/download", methods=["GET"])
    @jwt_required()
    def download_sales_report():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        start, end = resolve_report_range()
        if end <= start:
            return jsonify({"message": "The end date must not be before the start date."}), 400

        report = load_sales_report(start, end)
        filename = f"sales-report-{report['startDate']}-to-{report['endDate']}.csv"
        return Response(
            render_sales_csv(report),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    # Uploads
    @app.route("/api/uploads", methods=["POST"])
    def create_upload():
        verify_jwt_in_request(optional=True)
        current_user = get_current_user()

        data, content_type, original_name, upload_error = read_upload_from_request()
        if upload_error:
            return jsonify({"message": upload_error}), 400
        if not data:
            return jsonify({"message": "The uploaded image is empty."}), 400

        fields = request.form if request.form else get_json_payload()
        in_cart = is_truthy(fields.get("inCart"))

        upload_document = {
            "data": Binary(data),
            "contentType": content_type,
            "originalName": original_name,
            "size": len(data),
            "userId": current_user["_id"] if current_user else None,
            "uploadedBy": current_user.get("email") if current_user else "visitor",
            "inCart": in_cart,
            "inOrder": False,
            "createdAt": datetime.utcnow(),
        }
        result = db.uploads.insert_one(upload_document)
        app.logger.info(
            "Stored upload %s (%s bytes) from %s",
            result.inserted_id,
            len(data),
            upload_document["uploadedBy"],
        )

        return (
            jsonify(
                {
                    "message": "Image uploaded successfully.",
                    "upload": serialize_upload(upload_document),
                }
            ),
            201,
        )

    @app.route("/api/uploads/<upload_id>", methods=["GET"])
    def serve_upload(upload_id: str):
        upload_document, load_error = fetch_document(db.uploads, upload_id, "upload")
        if load_error:
            return load_error

        return Response(
            bytes(upload_document.get("data") or b""),
            mimetype=upload_document.get("contentType", "application/octet-stream"),
        )

    @app.route("/api/images", methods=["GET"])
    @jwt_required()
    def list_media_images():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page = min(
            max(safe_positive_int(request.args.get("page"), 1), 1), MAX_PAGE_NUMBER
        )
        total = db.uploads.count_documents({})
        cursor = (
            db.uploads.find({})
            .sort([("createdAt", -1), ("_id", -1)])
            .skip((page - 1) * MEDIA_PAGE_SIZE)
            .limit(MEDIA_PAGE_SIZE)
        )
        return jsonify(
            {
                "images": [serialize_media_image(document) for document in cursor],
                "page": page,
                "total": total,
                "totalPages": math.ceil(total / MEDIA_PAGE_SIZE) if total else 0,
            }
        )

    @app.route("/api/images/<image_id>", methods=["DELETE"])
    @jwt_required()
    def delete_media_image(image_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        upload_document, load_error = fetch_document(db.uploads, image_id, "image")
        if load_error:
            return load_error

        db.uploads.delete_one({"_id": upload_document["_id"]})
        app.logger.info("%s deleted image %s", admin_user.get("email"), image_id)
        return jsonify({"message": "Image deleted.", "_id": image_id})

    @app.route("/api/admin/uploads", methods=["GET"])
    @jwt_required()
    def admin_list_uploads():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page = min(
            max(safe_positive_int(request.args.get("page"), 1), 1), MAX_PAGE_NUMBER
        )
        limit = min(
            max(safe_positive_int(request.args.get("limit"), MEDIA_PAGE_SIZE), 1),
            UPLOADS_MAX_PAGE_SIZE,
        )

        query: Dict[str, object] = {}
        search_term = (request.args.get("search") or "").strip()
        if search_term:
            regex = re.compile(re.escape(search_term), re.IGNORECASE)
            query["$or"] = [{"originalName": regex}, {"uploadedBy": regex}]
        if is_truthy(request.args.get("inCart")):
            query["inCart"] = True
        if is_truthy(request.args.get("inOrder")):
            query["inOrder"] = True

        user_only = is_truthy(request.args.get("userOnly"))
        visitor_only = is_truthy(request.args.get("visitorOnly"))
        if user_only and not visitor_only:
            query["userId"] = {"$ne": None}
        elif visitor_only and not user_only:
            query["userId"] = None

        start_date = parse_iso_date(request.args.get("startDate"))
        end_date = parse_iso_date(request.args.get("endDate"), end_of_day=True)
        if start_date or end_date:
            created_filter: Dict[str, datetime] = {}
            if start_date:
                created_filter["$gte"] = start_date
            if end_date:
                created_filter["$lt"] = end_date
            query["createdAt"] = created_filter

        sort_field = UPLOAD_SORT_FIELDS.get(
            (request.args.get("sortBy") or "date").strip().lower(), "createdAt"
        )
        sort_direction = 1 if (request.args.get("sortOrder") or "").lower() == "asc" else -1

        total = db.uploads.count_documents(query)
        cursor = (
            db.uploads.find(query, {"data": 0})
            .sort([(sort_field, sort_direction), ("_id", sort_direction)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return jsonify(
            {
                "images": [serialize_upload(document) for document in cursor],
                "total": total,
                "page": page,
                "pages": math.ceil(total / limit) if total else 0,
            }
        )

    @app.route("/api/admin/uploads/<upload_id>/details", methods=["GET"])
    @jwt_required()
    def admin_upload_details(upload_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        upload_document, load_error = fetch_document(db.uploads, upload_id, "upload")
        if load_error:
            return load_error

        orders = list(
            db.orders.find({"products.customization.customImage": upload_document["_id"]})
        )
        details = serialize_upload(upload_document)
        details.update(
            {
                "orders": [
                    {
                        "_id": str(order["_id"]),
                        "status": order.get("status", "pending"),
                        "totalAmount": order.get("totalAmount", 0),
                        "createdAt": format_datetime(order.get("createdAt")),
                    }
                    for order in orders
                ],
                "orderCount": len(orders),
                "cartCount": 1 if upload_document.get("inCart") else 0,
            }
        )
        return jsonify(details)

    @app.route("/api/admin/uploads/download/<upload_id>", methods=["GET"])
    @jwt_required()
    def admin_download_upload(upload_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        upload_document, load_error = fetch_document(db.uploads, upload_id, "upload")
        if load_error:
            return load_error

        filename = upload_document.get("originalName") or f"{upload_id}"
        return Response(
            bytes(upload_document.get("data") or b""),
            mimetype=upload_document.get("contentType", "application/octet-stream"),
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.route("/api/admin/uploads/<upload_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_upload(upload_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        upload_document, load_error = fetch_document(db.uploads, upload_id, "upload")
        if load_error:
            return load_error

        db.uploads.delete_one({"_id": upload_document["_id"]})
        app.logger.info("%s deleted upload %s", admin_user.get("email"), upload_id)
        return jsonify({"message": "Upload deleted.", "_id": upload_id})

    # --- Admin Routes ---

    @app.route("/api/admin/users", methods=["GET"])
    @jwt_required()
    def list_users():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        users = [serialize_user(user) for user in db.users.find()]
        return jsonify({"users": users})

    # Mockups
    @app.route("/api/mockups/<provider_name>", methods=["POST"])
    def generate_mockup(provider_name: str):
        provider_name = provider_name.strip().lower()
        if provider_name not in PROVIDER_CLASSES:
            return jsonify({"message": f"Unknown mockup provider '{provider_name}'."}), 404

        provider = app.extensions["mockup_providers"].get(provider_name)
        if provider is None:
            return (
                jsonify({"message": f"The {provider_name} mockup service is not configured."}),
                503,
            )

        payload = get_json_payload()
        design = str(payload.get("design") or "").strip()
        if not design:
            return jsonify({"message": "A design image is required."}), 400

        product_document = None
        if payload.get("productId"):
            product_document, load_error = fetch_document(
                db.products, payload["productId"], "product"
            )
            if load_error:
                return load_error

        vendor_id = resolve_vendor_id(provider_name, payload, product_document)
        if not vendor_id:
            return (
                jsonify(
                    {"message": f"This product is not available for {provider_name} mockups."}
                ),
                400,
            )

        try:
            mockup_url = provider.generate(design, vendor_id)
        except MockupError as exc:
            app.logger.error("Mockup generation via %s failed: %s", provider_name, exc)
            return jsonify({"error": str(exc)}), 502

        return jsonify({"provider": provider_name, "mockupUrl": mockup_url})

    # Contact
    @app.route("/api/contact", methods=["POST"])
    def submit_contact_message():
        payload = get_json_payload()
        name = str(payload.get("name") or "").strip()
        email = normalize_email(payload.get("email"))
        message = str(payload.get("message") or "").strip()

        if not name or not message:
            return jsonify({"message": "Name and message are required."}), 400
        if not is_valid_email(email):
            return jsonify({"message": "Please provide a valid email address."}), 400

        message_document = {
            "name": name,
            "email": email,
            "phone": str(payload.get("phone") or "").strip(),
            "company": str(payload.get("company") or "").strip(),
            "message": message,
            "email_sent": False,
            "created_at": datetime.utcnow(),
        }
        insert_result = db.contact_messages.insert_one(message_document)

        email_sent, email_error = send_contact_email(message_document)
        if not email_sent:
            app.logger.warning("Contact email for %s not sent: %s", email, email_error)
        db.contact_messages.update_one(
            {"_id": insert_result.inserted_id}, {"$set": {"email_sent": email_sent}}
        )

        return (
            jsonify(
                {
                    "message": "Thank you for your message! We'll get back to you soon.",
                    "email_sent": email_sent,
                }
            ),
            201,
        )

    # Frontend bundle with SPA fallback
    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve_frontend(path: str):
        if path == "api" or path.startswith("api/"):
            return jsonify({"message": "Resource not found."}), 404

        build_directory = os.path.abspath(app.config["FRONTEND_BUILD_DIR"])
        if path and os.path.isfile(os.path.join(build_directory, path)):
            return send_from_directory(build_directory, path)

        if os.path.isfile(os.path.join(build_directory, "index.html")):
            return send_from_directory(build_directory, "index.html")

        return jsonify({"message": "Frontend build not found."}), 404

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
