from __future__ import annotations

import os
from datetime import datetime
from functools import wraps
from secrets import token_hex, token_urlsafe
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from bson import ObjectId
from bson.errors import InvalidId
from flask import (
    Flask,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import (
    LoginManager,
    UserMixin,
    current_user,
    login_required,
    login_user,
    logout_user,
)
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError
from dotenv import load_dotenv
from werkzeug.security import check_password_hash, generate_password_hash

import image_host
from geocoding import GeocodeResult, GeocodingError, geocode
from google_auth import GoogleAuthError, authorization_url, fetch_google_profile
from image_host import ImageHostError, destroy_images, remove_images, upload_images
from search_filters import build_search_filter
from signup_errors import SignupError, UserExistsError, ValidationError, classify_signup_error


load_dotenv()

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", token_hex(32))

app.config["MONGODB_URI"] = os.environ.get(
    "MONGODB_URI",
    "mongodb://127.0.0.1:27017/toilet_finder",
)
app.config["MONGODB_DB_NAME"] = os.environ.get("MONGODB_DB_NAME", "toilet_finder")
app.config["CLOUDINARY_FOLDER"] = os.environ.get("CLOUDINARY_FOLDER", "ToiletFinder")
app.config["MAX_CONTENT_LENGTH"] = 5 * 1024 * 1024

mongo_client = MongoClient(app.config["MONGODB_URI"])
mongo_db = mongo_client[app.config["MONGODB_DB_NAME"]]

image_host.configure()

login_manager = LoginManager(app)
login_manager.login_view = "login"
login_manager.login_message = "You must be signed in first!"
login_manager.login_message_category = "error"

MIN_RATING = 1
MAX_RATING = 5


class MethodOverrideMiddleware:
    """Lets HTML forms reach PUT/DELETE routes via ``POST ...?_method=PUT``."""

    allowed_methods = frozenset({"PUT", "DELETE", "PATCH"})

    def __init__(self, wsgi_app) -> None:
        self.wsgi_app = wsgi_app

    def __call__(self, environ, start_response):
        if environ.get("REQUEST_METHOD", "").upper() == "POST":
            query = parse_qs(environ.get("QUERY_STRING", ""))
            method = (query.get("_method") or [""])[0].upper()
            if method in self.allowed_methods:
                environ["REQUEST_METHOD"] = method
        return self.wsgi_app(environ, start_response)


app.wsgi_app = MethodOverrideMiddleware(app.wsgi_app)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value in (None, ""):
        return None
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class MongoDocument:
    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._data = data or {}

    def __getattr__(self, item: str) -> Any:
        if item.startswith("__"):
            raise AttributeError(item)
        if item == "id":
            _id = self._data.get("_id")
            return str(_id) if _id is not None else None
        value = self._data.get(item)
        if isinstance(value, ObjectId):
            return str(value)
        return value

    @property
    def mongo_id(self) -> Optional[ObjectId]:
        return self._data.get("_id")


class User(UserMixin, MongoDocument):
    collection = mongo_db["users"]

    def get_id(self) -> Optional[str]:
        return str(self._data.get("_id")) if self._data.get("_id") else None

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    @classmethod
    def get(cls, user_id: Any) -> Optional["User"]:
        oid = to_object_id(user_id)
        if not oid:
            return None
        doc = cls.collection.find_one({"_id": oid})
        return cls(doc) if doc else None

    @classmethod
    def get_by_username(cls, username: str) -> Optional["User"]:
        username = (username or "").strip()
        if not username:
            return None
        doc = cls.collection.find_one({"username": username})
        return cls(doc) if doc else None

    @classmethod
    def get_by_email(cls, email: str) -> Optional["User"]:
        normalized = cls.normalize_email(email)
        if not normalized:
            return None
        doc = cls.collection.find_one({"email": normalized})
        return cls(doc) if doc else None

    def check_password(self, password: str) -> bool:
        password_hash = self._data.get("password_hash")
        if not password_hash or not password:
            return False
        return check_password_hash(password_hash, password)

    @classmethod
    def register(cls, username: str, email: str, password: str) -> "User":
        """Validate and insert a new account.

        Raises ValidationError for bad input, UserExistsError when the username
        is taken and lets DuplicateKeyError from the unique indexes through.
        """
        username = (username or "").strip()
        email = cls.normalize_email(email)
        errors: Dict[str, str] = {}
        if not username:
            errors["username"] = "Username is required"
        elif not 3 <= len(username) <= 30:
            errors["username"] = "Username must be between 3 and 30 characters"
        if not email:
            errors["email"] = "Email is required"
        elif "@" not in email:
            errors["email"] = "Please enter a valid address"
        if not password:
            errors["password"] = "Password is required"
        elif len(password) < 8:
            errors["password"] = "Password must be at least 8 characters long"
        if errors:
            raise ValidationError(errors)
        if cls.get_by_username(username):
            raise UserExistsError()
        doc = {
            "username": username,
            "email": email,
            "password_hash": generate_password_hash(password),
            "created_at": datetime.utcnow(),
        }
        insert_result = cls.collection.insert_one(doc)
        doc["_id"] = insert_result.inserted_id
        return cls(doc)

    @classmethod
    def unique_username(cls, base: str) -> str:
        base = "".join(ch for ch in base if ch.isalnum() or ch in "._-")[:24] or "user"
        username = base
        for _ in range(20):
            if not cls.collection.find_one({"username": username}):
                return username
            username = f"{base}_{token_hex(2)}"
        return f"user_{token_hex(4)}"

    @classmethod
    def from_google(cls, info: Dict[str, Any]) -> "User":
        google_id = str(info.get("sub") or "")
        email = cls.normalize_email(info.get("email", ""))
        doc = cls.collection.find_one({"google_id": google_id}) if google_id else None
        if doc:
            return cls(doc)
        doc = cls.collection.find_one({"email": email})
        if doc:
            cls.collection.update_one({"_id": doc["_id"]}, {"$set": {"google_id": google_id}})
            doc["google_id"] = google_id
            return cls(doc)
        doc = {
            "username": cls.unique_username(email.split("@", 1)[0]),
            "email": email,
            "google_id": google_id,
            "created_at": datetime.utcnow(),
        }
        insert_result = cls.collection.insert_one(doc)
        doc["_id"] = insert_result.inserted_id
        return cls(doc)


class Review(MongoDocument):
    collection = mongo_db["reviews"]

    def __init__(self, data: Optional[Dict[str, Any]] = None, author: Optional[User] = None) -> None:
        super().__init__(data)
        self.author = author
        timestamp = (data or {}).get("created_at") if data else None
        self.created_at = timestamp if isinstance(timestamp, datetime) else datetime.utcnow()

    @classmethod
    def get(cls, review_id: Any) -> Optional["Review"]:
        oid = to_object_id(review_id)
        if not oid:
            return None
        doc = cls.collection.find_one({"_id": oid})
        return cls(doc) if doc else None


class Toilet(MongoDocument):
    collection = mongo_db["toilets"]

    def __init__(
        self,
        data: Optional[Dict[str, Any]] = None,
        author: Optional[User] = None,
        reviews: Optional[List[Review]] = None,
    ) -> None:
        super().__init__(data)
        self.author = author
        self.reviews = reviews or []

    @classmethod
    def get(cls, toilet_id: Any) -> Optional["Toilet"]:
        oid = to_object_id(toilet_id)
        if not oid:
            return None
        doc = cls.collection.find_one({"_id": oid})
        return cls(doc) if doc else None

    @classmethod
    def find(cls, query: Dict[str, Any], sort: Optional[Tuple[str, int]] = None) -> List["Toilet"]:
        cursor = cls.collection.find(query)
        if sort:
            cursor = cursor.sort(*sort)
        return [cls(doc) for doc in cursor]

    @property
    def coordinates(self) -> Optional[List[float]]:
        geometry = self._data.get("geometry") or {}
        return geometry.get("coordinates")

    def is_owned_by(self, user: Any) -> bool:
        if not user or not user.is_authenticated:
            return False
        return self.author_id is not None and self.author_id == user.id

    def get_average_rating(self) -> Optional[float]:
        if not self.mongo_id:
            return None
        pipeline = [
            {"$match": {"toilet_id": self.mongo_id}},
            {"$group": {"_id": "$toilet_id", "avg_rating": {"$avg": "$rating"}}},
        ]
        result = list(Review.collection.aggregate(pipeline))
        if not result:
            return None
        average = result[0].get("avg_rating")
        return round(float(average), 1) if average is not None else None


def hydrate_reviews(review_docs: Iterable[Dict[str, Any]]) -> List[Review]:
    docs = list(review_docs)
    author_ids = {doc.get("author_id") for doc in docs if doc.get("author_id")}
    authors: Dict[ObjectId, User] = {}
    if author_ids:
        author_cursor = mongo_db.users.find({"_id": {"$in": list(author_ids)}})
        authors = {doc["_id"]: User(doc) for doc in author_cursor}
    return [Review(doc, author=authors.get(doc.get("author_id"))) for doc in docs]


def ensure_indexes() -> None:
    mongo_db.users.create_index("username", unique=True)
    mongo_db.users.create_index("email", unique=True)
    mongo_db.users.create_index("google_id", unique=True, sparse=True)
    mongo_db.toilets.create_index("author_id")
    mongo_db.toilets.create_index("created_at")
    mongo_db.reviews.create_index([("toilet_id", ASCENDING), ("created_at", DESCENDING)])
    mongo_db.toilets.create_index([("geometry", "2dsphere")])


try:
    ensure_indexes()
except Exception as exc:  # pragma: no cover - best effort startup
    app.logger.warning("Unable to prepare MongoDB collections: %s", exc)


@app.context_processor
def inject_globals() -> Dict[str, Any]:
    return {"current_year": datetime.utcnow().year}


@login_manager.user_loader
def load_user(user_id: str) -> Optional[User]:
    return User.get(user_id)


def is_safe_next(target: Optional[str]) -> bool:
    if not target:
        return False
    parsed = urlparse(target)
    return not parsed.scheme and not parsed.netloc and target.startswith("/")


def region_lookup(text: str) -> Optional[GeocodeResult]:
    return geocode(text, biased=True)


def parse_toilet_form(form) -> Tuple[Dict[str, Any], List[str]]:
    fields: Dict[str, Any] = {
        "name": form.get("toilet[name]", "").strip(),
        "description": form.get("toilet[description]", "").strip(),
        "location": form.get("toilet[location]", "").strip(),
        "is_paid": form.get("toilet[isPaid]", "").lower() in ("true", "on", "1"),
    }
    errors: List[str] = []
    if not fields["name"]:
        errors.append("Name is required")
    if not fields["location"]:
        errors.append("Location is required")
    rating_raw = form.get("toilet[cleanlinessRating]", "").strip()
    try:
        rating = int(rating_raw)
    except ValueError:
        errors.append("Cleanliness rating must be a number")
    else:
        if rating < MIN_RATING or rating > MAX_RATING:
            errors.append(f"Cleanliness rating must be between {MIN_RATING} and {MAX_RATING}")
        fields["cleanliness_rating"] = rating
    return fields, errors


def author_required(view):
    @wraps(view)
    def wrapped(toilet_id: str, *args, **kwargs):
        if not to_object_id(toilet_id):
            flash("Invalid toilet ID!", "error")
            return redirect(url_for("toilets"))
        toilet = Toilet.get(toilet_id)
        if not toilet:
            flash("Toilet not found", "error")
            return redirect(url_for("toilets"))
        if not toilet.is_owned_by(current_user):
            flash("You do not have permission to do that!", "error")
            return redirect(url_for("show_toilet", toilet_id=toilet_id))
        return view(toilet, *args, **kwargs)

    return wrapped


@app.route("/")
def index():
    return render_template("home.html")


@app.route("/register", methods=["GET", "POST"])
def register():
    if current_user.is_authenticated:
        return redirect(url_for("toilets"))
    if request.method == "POST":
        username = request.form.get("username", "")
        email = request.form.get("email", "")
        password = request.form.get("password", "")
        try:
            user = User.register(username, email, password)
        except (SignupError, PyMongoError) as exc:
            app.logger.info("Registration rejected for %r: %s", username, exc)
            flash(classify_signup_error(exc), "error")
            return redirect(url_for("register"))
        login_user(user)
        flash(f"Welcome, {user.username}!", "success")
        return redirect(url_for("toilets"))
    return render_template("auth/register.html")


@app.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("toilets"))
    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        user = User.get_by_username(username)
        if user and user.check_password(password):
            login_user(user)
            flash("Welcome back!", "success")
            next_page = request.args.get("next") or request.form.get("next")
            return redirect(next_page if is_safe_next(next_page) else url_for("toilets"))
        flash("Password or username is incorrect", "error")
        return redirect(url_for("login", next=request.args.get("next")))
    return render_template("auth/login.html")


@app.route("/logout", methods=["POST"])
def logout():
    logout_user()
    flash("Logged out successfully", "success")
    return redirect(url_for("toilets"))


@app.route("/google")
def google_login():
    state = token_urlsafe(16)
    session["google_oauth_state"] = state
    try:
        target = authorization_url(state, url_for("google_callback", _external=True))
    except GoogleAuthError as exc:
        flash(str(exc), "error")
        return redirect(url_for("index"))
    return redirect(target)


@app.route("/google/callback")
def google_callback():
    expected_state = session.pop("google_oauth_state", None)
    code = request.args.get("code")
    if not expected_state or request.args.get("state") != expected_state or not code:
        flash("Google login failed. Please try again.", "error")
        return redirect(url_for("index"))
    try:
        info = fetch_google_profile(code, url_for("google_callback", _external=True))
        user = User.from_google(info)
    except GoogleAuthError as exc:
        flash(f"Google login failed: {exc}", "error")
        return redirect(url_for("index"))
    except PyMongoError:
        app.logger.exception("Could not store Google account")
        flash("Google login failed. Please try again.", "error")
        return redirect(url_for("index"))
    login_user(user)
    flash(f"Welcome, {user.username}!", "success")
    return redirect(url_for("toilets"))


@app.route("/toilets")
def toilets():
    paid = request.args.get("paid")
    min_rating = request.args.get("minRating")
    location = request.args.get("location", "")

    search = build_search_filter(paid, min_rating, location, region_lookup)
    results: List[Toilet] = []
    if search.query is not None:
        # $near already orders by distance and cannot be combined with sort().
        sort = None if search.is_location_search else ("created_at", DESCENDING)
        results = Toilet.find(search.query, sort=sort)
        if search.is_location_search:
            flash(search.results_message(len(results)), "success" if results else "error")
    elif search.message:
        flash(search.message, search.category)

    return render_template(
        "toilets/index.html",
        toilets=results,
        paid=paid,
        min_rating=min_rating,
        location=location,
        searched_city=search.searched_city,
    )


@app.route("/toilets/new", methods=["GET", "POST"])
@login_required
def new_toilet():
    if request.method == "GET":
        return render_template("toilets/new.html")

    fields, errors = parse_toilet_form(request.form)
    if errors:
        flash(", ".join(errors), "error")
        return redirect(url_for("new_toilet"))
    try:
        place = geocode(fields["location"])
    except GeocodingError:
        flash("Error creating toilet. Please try again.", "error")
        return redirect(url_for("new_toilet"))
    if place is None:
        flash("Could not find location. Please enter a more specific address.", "error")
        return redirect(url_for("new_toilet"))
    try:
        images = upload_images(request.files.getlist("image"), folder=app.config["CLOUDINARY_FOLDER"])
    except ImageHostError:
        flash("Could not upload images. Please try again.", "error")
        return redirect(url_for("new_toilet"))

    now = datetime.utcnow()
    doc = {
        **fields,
        "geometry": place.point,
        "images": images,
        "author_id": current_user.mongo_id,
        "created_at": now,
        "updated_at": now,
    }
    try:
        insert_result = Toilet.collection.insert_one(doc)
    except PyMongoError:
        app.logger.exception("Error creating toilet")
        flash("Error creating toilet. Please try again.", "error")
        return redirect(url_for("new_toilet"))
    app.logger.info("Toilet created id=%s author=%s", insert_result.inserted_id, current_user.id)
    flash("Toilet added successfully!", "success")
    return redirect(url_for("show_toilet", toilet_id=str(insert_result.inserted_id)))


@app.route("/toilets/<toilet_id>")
def show_toilet(toilet_id: str):
    toilet = Toilet.get(toilet_id)
    if not toilet:
        flash("Toilet not found", "error")
        return redirect(url_for("toilets"))
    toilet.author = User.get(toilet.author_id)
    review_docs = mongo_db.reviews.find({"toilet_id": toilet.mongo_id}).sort("created_at", DESCENDING)
    toilet.reviews = hydrate_reviews(review_docs)
    return render_template(
        "toilets/show.html",
        toilet=toilet,
        average_rating=toilet.get_average_rating(),
        searched_city=None,
    )


@app.route("/toilets/<toilet_id>/edit")
@login_required
@author_required
def edit_toilet(toilet: Toilet):
    return render_template("toilets/edit.html", toilet=toilet)


@app.route("/toilets/<toilet_id>", methods=["PUT"])
@login_required
@author_required
def update_toilet(toilet: Toilet):
    fields, errors = parse_toilet_form(request.form)
    if errors:
        flash(", ".join(errors), "error")
        return redirect(url_for("edit_toilet", toilet_id=toilet.id))
    try:
        place = geocode(fields["location"])
    except GeocodingError:
        flash("Error updating toilet", "error")
        return redirect(url_for("edit_toilet", toilet_id=toilet.id))
    if place is None:
        flash("Could not find location. Please enter a more specific address.", "error")
        return redirect(url_for("edit_toilet", toilet_id=toilet.id))

    delete_filenames = request.form.getlist("deleteImages")
    destroyed: List[str] = []
    try:
        destroy_images(delete_filenames)
        destroyed = delete_filenames
        new_images = upload_images(request.files.getlist("image"), folder=app.config["CLOUDINARY_FOLDER"])
    except ImageHostError as exc:
        destroyed = destroyed or exc.destroyed
        if destroyed:
            # The host no longer has these, so the listing must stop pointing at them.
            remaining = remove_images(toilet.images or [], destroyed)
            Toilet.collection.update_one({"_id": toilet.mongo_id}, {"$set": {"images": remaining}})
        flash("Error updating toilet", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet.id))

    images = remove_images(toilet.images or [], delete_filenames)
    images.extend(new_images)
    update_doc = {
        **fields,
        "geometry": place.point,
        "images": images,
        "updated_at": datetime.utcnow(),
    }
    try:
        Toilet.collection.update_one({"_id": toilet.mongo_id}, {"$set": update_doc})
    except PyMongoError:
        app.logger.exception("Error updating toilet %s", toilet.id)
        flash("Error updating toilet", "error")
        return redirect(url_for("toilets"))
    flash("Successfully updated toilet", "success")
    return redirect(url_for("show_toilet", toilet_id=toilet.id))


@app.route("/toilets/<toilet_id>", methods=["DELETE"])
@login_required
@author_required
def delete_toilet(toilet: Toilet):
    filenames = [img.get("filename") for img in (toilet.images or []) if img.get("filename")]
    try:
        destroy_images(filenames)
    except ImageHostError as exc:
        app.logger.warning("Could not remove images for toilet %s: %s", toilet.id, exc)
    mongo_db.reviews.delete_many({"toilet_id": toilet.mongo_id})
    Toilet.collection.delete_one({"_id": toilet.mongo_id})
    flash("Successfully deleted toilet", "success")
    return redirect(url_for("toilets"))


@app.route("/toilets/<toilet_id>/reviews", methods=["POST"])
@login_required
def add_review(toilet_id: str):
    toilet = Toilet.get(toilet_id)
    if not toilet:
        flash("Toilet not found", "error")
        return redirect(url_for("toilets"))
    rating_raw = request.form.get("review[rating]", "")
    body = request.form.get("review[body]", "").strip()
    if not rating_raw:
        flash("Rating is required", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet_id))
    try:
        rating = int(rating_raw)
    except ValueError:
        flash("Invalid rating value", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet_id))
    if rating < MIN_RATING or rating > MAX_RATING:
        flash(f"Rating must be between {MIN_RATING} and {MAX_RATING}", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet_id))
    if not body:
        flash("Review text is required", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet_id))
    mongo_db.reviews.insert_one(
        {
            "toilet_id": toilet.mongo_id,
            "author_id": current_user.mongo_id,
            "rating": rating,
            "body": body,
            "created_at": datetime.utcnow(),
        }
    )
    flash("Your review has been added", "success")
    return redirect(url_for("show_toilet", toilet_id=toilet_id))


@app.route("/toilets/<toilet_id>/reviews/<review_id>", methods=["DELETE"])
@login_required
def delete_review(toilet_id: str, review_id: str):
    toilet = Toilet.get(toilet_id)
    review = Review.get(review_id)
    if not toilet or not review or review.toilet_id != toilet.id:
        flash("Review not found", "error")
        return redirect(url_for("toilets"))
    if review.author_id != current_user.id and not toilet.is_owned_by(current_user):
        flash("You do not have permission to do that!", "error")
        return redirect(url_for("show_toilet", toilet_id=toilet_id))
    mongo_db.reviews.delete_one({"_id": review.mongo_id})
    flash("Review deleted", "success")
    return redirect(url_for("show_toilet", toilet_id=toilet_id))


if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=3000)
