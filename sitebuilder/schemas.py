from pydantic import BaseModel, Field


# -----------------------------
# Auth / users
# -----------------------------
class Register(BaseModel):
    username: str
    email: str
    password: str


class Login(BaseModel):
    username_or_email: str
    password: str


class ChangePassword(BaseModel):
    current_password: str
    new_password: str


class ProfileIn(BaseModel):
    bio: str = ""
    profile_picture_url: str = ""


class UserOut(BaseModel):
    id: str
    username: str
    email: str
    is_admin: bool
    is_active: bool
    bio: str
    profile_picture_url: str
    created_at: int
    last_login: int


# -----------------------------
# Projects
# -----------------------------
class ProjectIn(BaseModel):
    name: str
    description: str = ""
    content: str | None = None
    is_public: bool = False
    tags: list[str] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    name: str
    description: str = ""
    content: str
    is_public: bool = False
    tags: list[str] = Field(default_factory=list)


class ProjectOut(BaseModel):
    id: str
    name: str
    description: str
    content: str
    owner_id: str
    is_public: bool
    tags: list[str]
    created_at: int
    updated_at: int


class ShareIn(BaseModel):
    user_id: str
    role: str = "viewer"
    can_edit: bool = False
    can_share: bool = False
    can_delete: bool = False


class MemberOut(BaseModel):
    id: str
    user_id: str
    project_id: str
    role: str
    can_edit: bool
    can_share: bool
    can_delete: bool
    created_at: int
    last_accessed: int


class ExportOut(BaseModel):
    component_name: str
    source: str


# -----------------------------
# Components
# -----------------------------
class ComponentIn(BaseModel):
    name: str
    description: str = ""
    content: str
    is_public: bool = False
    tags: list[str] = Field(default_factory=list)


class CloneIn(BaseModel):
    name: str
    description: str = ""


class ComponentOut(BaseModel):
    id: str
    name: str
    description: str
    content: str
    owner_id: str
    is_public: bool
    usage_count: int
    tags: list[str]
    created_at: int
    updated_at: int


# -----------------------------
# Settings
# -----------------------------
class SettingIn(BaseModel):
    value: str


class SettingOut(BaseModel):
    key: str
    value: str
    created_at: int
    updated_at: int


class CopySettingsIn(BaseModel):
    target_user_id: str
