import secrets
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from sitebuilder.core import editor, repository, security
from sitebuilder.core.config import COOKIE_SECURE, SESSION_HOURS
from sitebuilder.core.db import get_db, init_db, run_migrations
from sitebuilder.core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    SiteBuilderError,
    ValidationError,
)
from sitebuilder.core.logging import get_logger
from sitebuilder.core.models import Component, Project, Setting, User, UserProject
from sitebuilder.schemas import (
    ChangePassword,
    CloneIn,
    ComponentIn,
    ComponentOut,
    CopySettingsIn,
    ExportOut,
    Login,
    MemberOut,
    ProfileIn,
    ProjectIn,
    ProjectOut,
    ProjectUpdate,
    Register,
    SettingIn,
    SettingOut,
    ShareIn,
    UserOut,
)

log = get_logger("web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    try:
        run_migrations()
    except Exception:
        # Serve anyway; the log says what broke
        log.exception("Migration failed")
    yield


app = FastAPI(title="Site Builder", lifespan=lifespan)

# -----------------------------
# Static frontend shell
# -----------------------------
STATIC_DIR = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.get("/", include_in_schema=False)
def root():
    return FileResponse(str(STATIC_DIR / "index.html"))


# -----------------------------
# Global security settings
# -----------------------------

# In-memory sessions and rate limiting
sessions: dict[str, dict] = {}
SESSION_DURATION = timedelta(hours=SESSION_HOURS)

# login_attempts[(login, ip)] = [timestamps]
login_attempts: dict[tuple[str, str], list[float]] = {}

MAX_LOGIN_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 300

ERROR_STATUS = {
    ValidationError: 400,
    AuthError: 401,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
}


@app.exception_handler(SiteBuilderError)
async def sitebuilder_error_handler(request: Request, exc: SiteBuilderError):
    status = ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status, content={"detail": exc.message, "code": exc.code})


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)

    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "script-src 'self'; "
        "style-src 'self'; "
        "img-src 'self' data: https:; "
        "object-src 'none'; "
        "base-uri 'none'; "
        "frame-ancestors 'none'; "
        "form-action 'self';"
    )
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    if COOKIE_SECURE:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


# -----------------------------
# Helpers
# -----------------------------
def get_client_ip(request: Request) -> str:
    client = request.client
    return client.host if client else "unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def optional_session(request: Request, db: Session = Depends(get_db)) -> dict | None:
    session_id = request.cookies.get("session_id")
    if not session_id or session_id not in sessions:
        return None

    s = sessions[session_id]
    if s["expires"] < _now():
        log.info("Session expired for user_id=%s", s["user_id"])
        del sessions[session_id]
        return None

    # Accounts can be deactivated from the CLI, outside this process
    user = db.get(User, s["user_id"])
    if not user or not user.is_active:
        log.info("Session dropped for inactive user_id=%s", s["user_id"])
        drop_user_sessions(s["user_id"])
        return None

    return s


def prune_expired_sessions() -> int:
    now = _now()
    expired = [sid for sid, s in sessions.items() if s["expires"] < now]
    for sid in expired:
        del sessions[sid]
    return len(expired)


def get_session(session=Depends(optional_session)) -> dict:
    if session is None:
        raise HTTPException(401, "Not logged in")
    return session


def require_csrf(
    request: Request,
    session=Depends(get_session),
    csrf_header: str | None = Header(default=None, alias="X-CSRF-Token"),
):
    if not csrf_header or not secrets.compare_digest(csrf_header, session["csrf_token"]):
        log.warning(
            "CSRF validation failed for user_id=%s ip=%s",
            session.get("user_id"),
            get_client_ip(request),
        )
        raise HTTPException(status_code=403, detail="CSRF token invalid")
    return session


def require_admin(session=Depends(get_session)):
    if not session.get("is_admin"):
        raise HTTPException(status_code=403, detail="Administrator access required")
    return session


def require_admin_csrf(session=Depends(require_csrf)):
    return require_admin(session)


def rate_limit_login(login: str, ip: str):
    key = (login.lower(), ip)
    now = time.time()
    prune_login_attempts(now)
    attempts = [t for t in login_attempts.get(key, []) if now - t < LOGIN_WINDOW_SECONDS]
    attempts.append(now)
    login_attempts[key] = attempts

    if len(attempts) > MAX_LOGIN_ATTEMPTS:
        log.warning("Rate limit exceeded login=%s ip=%s attempts=%s", login, ip, len(attempts))
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts. Please try again later.",
        )


def prune_login_attempts(now: float) -> int:
    stale = [
        key for key, attempts in login_attempts.items()
        if not attempts or now - attempts[-1] >= LOGIN_WINDOW_SECONDS
    ]
    for key in stale:
        del login_attempts[key]
    return len(stale)


def drop_user_sessions(user_id: str) -> int:
    stale = [sid for sid, s in sessions.items() if s["user_id"] == user_id]
    for sid in stale:
        del sessions[sid]
    return len(stale)


def user_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        username=u.username,
        email=u.email,
        is_admin=u.is_admin,
        is_active=u.is_active,
        bio=u.bio,
        profile_picture_url=u.profile_picture_url,
        created_at=u.created_at,
        last_login=u.last_login,
    )


def project_out(p: Project) -> ProjectOut:
    return ProjectOut(
        id=p.id,
        name=p.name,
        description=p.description,
        content=p.content,
        owner_id=p.owner_id,
        is_public=p.is_public,
        tags=p.tag_list,
        created_at=p.created_at,
        updated_at=p.updated_at,
    )


def member_out(m: UserProject) -> MemberOut:
    return MemberOut(
        id=m.id,
        user_id=m.user_id,
        project_id=m.project_id,
        role=m.role,
        can_edit=m.can_edit,
        can_share=m.can_share,
        can_delete=m.can_delete,
        created_at=m.created_at,
        last_accessed=m.last_accessed,
    )


def component_out(c: Component) -> ComponentOut:
    return ComponentOut(
        id=c.id,
        name=c.name,
        description=c.description,
        content=c.content,
        owner_id=c.owner_id,
        is_public=c.is_public,
        usage_count=c.usage_count,
        tags=c.tag_list,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def setting_out(s: Setting) -> SettingOut:
    return SettingOut(key=s.key, value=s.value, created_at=s.created_at, updated_at=s.updated_at)


# -----------------------------
# Auth endpoints
# -----------------------------
@app.post("/register", response_model=UserOut, status_code=201)
def register(req: Register, request: Request, db: Session = Depends(get_db)):
    ip = get_client_ip(request)
    try:
        user = security.register_user(db, req.username, req.email, req.password)
    except SiteBuilderError as e:
        log.warning("Registration failed username=%s ip=%s reason=%s", req.username, ip, e)
        raise

    log.info("User registered username=%s ip=%s", req.username, ip)
    return user_out(user)


@app.post("/login")
def login(req: Login, response: Response, request: Request, db: Session = Depends(get_db)):
    ip = get_client_ip(request)
    rate_limit_login(req.username_or_email, ip)

    user = security.login_user(db, req.username_or_email, req.password)
    prune_expired_sessions()

    # successful login -> reset attempts
    login_attempts.pop((req.username_or_email.lower(), ip), None)

    session_id = uuid.uuid4().hex
    csrf_token = secrets.token_hex(32)
    sessions[session_id] = {
        "user_id": user.id,
        "username": user.username,
        "is_admin": user.is_admin,
        "csrf_token": csrf_token,
        "expires": _now() + SESSION_DURATION,
    }

    response.set_cookie(
        "session_id",
        value=session_id,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="strict",
        max_age=int(SESSION_DURATION.total_seconds()),
        path="/",
    )

    log.info("Login successful username=%s ip=%s", user.username, ip)
    return {"message": "Logged in", "user": user_out(user), "csrf_token": csrf_token}


@app.post("/logout")
def logout(request: Request, response: Response, session=Depends(require_csrf)):
    session_id = request.cookies.get("session_id")
    if session_id in sessions:
        log.info("Logout username=%s ip=%s", session["username"], get_client_ip(request))
        del sessions[session_id]
    response.delete_cookie("session_id", path="/")
    return {"message": "Logged out"}


@app.get("/me", response_model=UserOut)
def me(session=Depends(get_session), db: Session = Depends(get_db)):
    return user_out(security.get_user(db, session["user_id"]))


@app.put("/me/profile", response_model=UserOut)
def update_profile_api(data: ProfileIn, session=Depends(require_csrf), db: Session = Depends(get_db)):
    user = security.update_user_profile(db, session["user_id"], data.bio, data.profile_picture_url)
    return user_out(user)


@app.post("/me/password")
def change_password_api(
    data: ChangePassword,
    request: Request,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    security.change_password(db, session["user_id"], data.current_password, data.new_password)
    # Other logins must authenticate again with the new password
    current = request.cookies.get("session_id")
    for sid in [sid for sid, s in sessions.items() if s["user_id"] == session["user_id"] and sid != current]:
        del sessions[sid]
    log.info("Password changed user_id=%s ip=%s", session["user_id"], get_client_ip(request))
    return {"message": "Password changed"}


@app.post("/me/deactivate")
def deactivate_me(response: Response, session=Depends(require_csrf), db: Session = Depends(get_db)):
    security.deactivate_user(db, session["user_id"])
    drop_user_sessions(session["user_id"])
    response.delete_cookie("session_id", path="/")
    return {"message": "Account deactivated"}


# -----------------------------
# Admin endpoints
# -----------------------------
@app.get("/users", response_model=list[UserOut])
def list_users_api(session=Depends(require_admin), db: Session = Depends(get_db)):
    return [user_out(u) for u in security.list_users(db)]


@app.post("/users/{user_id}/deactivate", response_model=UserOut)
def deactivate_user_api(user_id: str, session=Depends(require_admin_csrf), db: Session = Depends(get_db)):
    user = security.deactivate_user(db, user_id)
    dropped = drop_user_sessions(user_id)
    log.info("Admin %s deactivated user_id=%s sessions_dropped=%s", session["username"], user_id, dropped)
    return user_out(user)


@app.post("/users/{user_id}/settings/copy")
def copy_settings_api(
    user_id: str,
    data: CopySettingsIn,
    session=Depends(require_admin_csrf),
    db: Session = Depends(get_db),
):
    security.get_user(db, user_id)
    security.get_user(db, data.target_user_id)
    count = repository.copy_user_settings(db, user_id, data.target_user_id)
    return {"copied": count}


# -----------------------------
# Project endpoints
# -----------------------------
@app.get("/projects", response_model=list[ProjectOut])
def list_projects_api(session=Depends(get_session), db: Session = Depends(get_db)):
    return [project_out(p) for p in repository.list_projects(db, session["user_id"])]


@app.get("/projects/public", response_model=list[ProjectOut])
def list_public_projects_api(db: Session = Depends(get_db)):
    return [project_out(p) for p in repository.list_public_projects(db)]


@app.post("/projects", response_model=ProjectOut, status_code=201)
def create_project_api(data: ProjectIn, session=Depends(require_csrf), db: Session = Depends(get_db)):
    p = repository.create_project(
        db,
        owner_id=session["user_id"],
        name=data.name,
        description=data.description,
        content=data.content,
        is_public=data.is_public,
        tags=data.tags,
    )
    return project_out(p)


@app.get("/projects/{project_id}", response_model=ProjectOut)
def get_project_api(project_id: str, session=Depends(optional_session), db: Session = Depends(get_db)):
    user_id = session["user_id"] if session else None
    return project_out(repository.get_project(db, project_id, user_id))


@app.put("/projects/{project_id}", response_model=ProjectOut)
def update_project_api(
    project_id: str,
    data: ProjectUpdate,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    p = repository.update_project(
        db,
        project_id,
        session["user_id"],
        name=data.name,
        description=data.description,
        content=data.content,
        is_public=data.is_public,
        tags=data.tags,
    )
    return project_out(p)


@app.delete("/projects/{project_id}", status_code=204)
def delete_project_api(project_id: str, session=Depends(require_csrf), db: Session = Depends(get_db)):
    repository.delete_project(db, project_id, session["user_id"])
    return Response(status_code=204)


@app.get("/projects/{project_id}/export", response_model=ExportOut)
def export_project_api(project_id: str, session=Depends(optional_session), db: Session = Depends(get_db)):
    user_id = session["user_id"] if session else None
    p = repository.get_project(db, project_id, user_id)
    return ExportOut(
        component_name=editor.component_name(p.name),
        source=editor.export_project_source(p),
    )


@app.get("/projects/{project_id}/members", response_model=list[MemberOut])
def list_members_api(project_id: str, session=Depends(get_session), db: Session = Depends(get_db)):
    repository.get_project(db, project_id, session["user_id"])
    return [member_out(m) for m in repository.list_project_members(db, project_id)]


@app.post("/projects/{project_id}/members", response_model=MemberOut)
def share_project_api(
    project_id: str,
    data: ShareIn,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    m = repository.share_project(
        db,
        project_id,
        actor_id=session["user_id"],
        user_id=data.user_id,
        role=data.role,
        can_edit=data.can_edit,
        can_share=data.can_share,
        can_delete=data.can_delete,
    )
    return member_out(m)


@app.delete("/projects/{project_id}/members/{user_id}", status_code=204)
def remove_member_api(
    project_id: str,
    user_id: str,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    repository.remove_user_from_project(db, project_id, session["user_id"], user_id)
    return Response(status_code=204)


# -----------------------------
# Component endpoints
# -----------------------------
@app.get("/components", response_model=list[ComponentOut])
def list_components_api(session=Depends(get_session), db: Session = Depends(get_db)):
    return [component_out(c) for c in repository.list_components(db, session["user_id"])]


@app.post("/components", response_model=ComponentOut, status_code=201)
def create_component_api(data: ComponentIn, session=Depends(require_csrf), db: Session = Depends(get_db)):
    c = repository.create_component(
        db,
        owner_id=session["user_id"],
        name=data.name,
        description=data.description,
        content=data.content,
        is_public=data.is_public,
        tags=data.tags,
    )
    return component_out(c)


@app.get("/components/{component_id}", response_model=ComponentOut)
def get_component_api(component_id: str, session=Depends(optional_session), db: Session = Depends(get_db)):
    user_id = session["user_id"] if session else None
    return component_out(repository.get_component(db, component_id, user_id))


@app.put("/components/{component_id}", response_model=ComponentOut)
def update_component_api(
    component_id: str,
    data: ComponentIn,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    c = repository.update_component(
        db,
        component_id,
        session["user_id"],
        name=data.name,
        description=data.description,
        content=data.content,
        is_public=data.is_public,
        tags=data.tags,
    )
    return component_out(c)


@app.delete("/components/{component_id}", status_code=204)
def delete_component_api(component_id: str, session=Depends(require_csrf), db: Session = Depends(get_db)):
    repository.delete_component(db, component_id, session["user_id"])
    return Response(status_code=204)


@app.post("/components/{component_id}/use", response_model=ComponentOut)
def use_component_api(component_id: str, session=Depends(require_csrf), db: Session = Depends(get_db)):
    repository.get_component(db, component_id, session["user_id"])
    return component_out(repository.increment_component_usage(db, component_id))


@app.post("/components/{component_id}/clone", response_model=ComponentOut, status_code=201)
def clone_component_api(
    component_id: str,
    data: CloneIn,
    session=Depends(require_csrf),
    db: Session = Depends(get_db),
):
    c = repository.clone_component(db, component_id, data.name, data.description, session["user_id"])
    return component_out(c)


# -----------------------------
# Settings endpoints
# -----------------------------
@app.get("/settings", response_model=list[SettingOut])
def list_settings_api(session=Depends(get_session), db: Session = Depends(get_db)):
    return [setting_out(s) for s in repository.list_settings(db, session["user_id"])]


@app.get("/settings/{key}", response_model=SettingOut)
def get_setting_api(key: str, session=Depends(get_session), db: Session = Depends(get_db)):
    s = repository.get_setting(db, session["user_id"], key)
    if not s:
        raise HTTPException(404, f"Setting '{key}' not found")
    return setting_out(s)


@app.put("/settings/{key}", response_model=SettingOut)
def set_setting_api(key: str, data: SettingIn, session=Depends(require_csrf), db: Session = Depends(get_db)):
    return setting_out(repository.set_setting(db, session["user_id"], key, data.value))


@app.delete("/settings/{key}", status_code=204)
def delete_setting_api(key: str, session=Depends(require_csrf), db: Session = Depends(get_db)):
    repository.delete_setting(db, session["user_id"], key)
    return Response(status_code=204)


@app.delete("/settings")
def delete_all_settings_api(session=Depends(require_csrf), db: Session = Depends(get_db)):
    return {"deleted": repository.delete_all_user_settings(db, session["user_id"])}


# -----------------------------
# Editor palette
# -----------------------------
@app.get("/palette")
def palette_api():
    return [editor.palette_item(t) for t in editor.PALETTE]


@app.get("/palette/{element_type}")
def palette_item_api(element_type: str):
    return editor.palette_item(element_type)
