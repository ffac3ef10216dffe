from sqlalchemy import or_
from sqlalchemy.orm import Session

from .editor import DEFAULT_CONTENT
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .logging import get_logger
from .models import (
    Component,
    Project,
    Setting,
    User,
    UserProject,
    encode_tags,
    now_ms,
    setting_id,
)

log = get_logger("repository")

ROLES = ("owner", "editor", "viewer")


def _check_content(content) -> str:
    if not isinstance(content, str):
        raise ValidationError("Content must be a JSON string")
    return content


def _check_name(name: str | None, what: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{what} name is required")
    return name


def _is_admin(db: Session, user_id: str) -> bool:
    user = db.get(User, user_id)
    return bool(user and user.is_admin)


# -----------------------------------------
# PROJECTS
# -----------------------------------------
def get_membership(db: Session, project_id: str, user_id: str) -> UserProject | None:
    return (
        db.query(UserProject)
        .filter_by(project_id=project_id, user_id=user_id)
        .first()
    )


def _load_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise NotFoundError(f"Project with ID {project_id} not found")
    return project


def _require_project_permission(db: Session, project: Project, user_id: str, flag: str):
    """flag is one of can_edit / can_share / can_delete."""
    if project.owner_id == user_id or _is_admin(db, user_id):
        return
    membership = get_membership(db, project.id, user_id)
    if membership and getattr(membership, flag):
        return
    log.warning(
        "Project permission denied project_id=%s user_id=%s needs=%s",
        project.id, user_id, flag,
    )
    raise PermissionDeniedError(f"You do not have permission to modify project {project.id}")


def create_project(
    db: Session,
    owner_id: str,
    name: str,
    description: str = "",
    content: str | None = None,
    is_public: bool = False,
    tags=(),
) -> Project:
    name = _check_name(name, "Project")
    content = DEFAULT_CONTENT if content is None else _check_content(content)
    now = now_ms()

    project = Project(
        name=name,
        description=description or "",
        content=content,
        owner_id=owner_id,
        is_public=is_public,
        tags=encode_tags(tags),
        created_at=now,
        updated_at=now,
    )
    db.add(project)
    db.flush()

    db.add(UserProject(
        user_id=owner_id,
        project_id=project.id,
        role="owner",
        can_edit=True,
        can_share=True,
        can_delete=True,
        created_at=now,
        last_accessed=now,
    ))
    db.commit()
    db.refresh(project)

    log.info("Created project name=%s id=%s owner_id=%s", project.name, project.id, owner_id)
    return project


def update_project(
    db: Session,
    project_id: str,
    user_id: str,
    name: str,
    description: str,
    content: str,
    is_public: bool = False,
    tags=(),
) -> Project:
    project = _load_project(db, project_id)
    _require_project_permission(db, project, user_id, "can_edit")

    project.name = _check_name(name, "Project")
    project.description = description or ""
    project.content = _check_content(content)
    project.is_public = is_public
    project.tags = encode_tags(tags)
    project.updated_at = now_ms()
    db.commit()
    db.refresh(project)

    log.info("Updated project name=%s id=%s by user_id=%s", project.name, project.id, user_id)
    return project


def delete_project(db: Session, project_id: str, user_id: str) -> None:
    project = _load_project(db, project_id)
    _require_project_permission(db, project, user_id, "can_delete")

    removed = (
        db.query(UserProject)
        .filter_by(project_id=project_id)
        .delete(synchronize_session=False)
    )
    db.delete(project)
    db.commit()

    log.info("Deleted project id=%s memberships=%s by user_id=%s", project_id, removed, user_id)


def can_read_project(db: Session, project: Project, user_id: str | None) -> bool:
    if project.is_public:
        return True
    if not user_id:
        return False
    if project.owner_id == user_id or _is_admin(db, user_id):
        return True
    return get_membership(db, project.id, user_id) is not None


def get_project(db: Session, project_id: str, user_id: str | None = None) -> Project:
    project = _load_project(db, project_id)
    if not can_read_project(db, project, user_id):
        # Hide private projects entirely
        raise NotFoundError(f"Project with ID {project_id} not found")
    if user_id:
        update_last_project_access(db, project_id, user_id)
    return project


def list_projects(db: Session, user_id: str) -> list[Project]:
    """Projects owned by or shared with user_id, newest edit first."""
    shared_ids = db.query(UserProject.project_id).filter_by(user_id=user_id)
    return (
        db.query(Project)
        .filter(or_(Project.owner_id == user_id, Project.id.in_(shared_ids)))
        .order_by(Project.updated_at.desc())
        .all()
    )


def list_public_projects(db: Session) -> list[Project]:
    return (
        db.query(Project)
        .filter(Project.is_public.is_(True))
        .order_by(Project.updated_at.desc())
        .all()
    )


def share_project(
    db: Session,
    project_id: str,
    actor_id: str,
    user_id: str,
    role: str,
    can_edit: bool = False,
    can_share: bool = False,
    can_delete: bool = False,
) -> UserProject:
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")
    if role == "owner":
        raise ValidationError("The owner role cannot be granted by sharing")

    project = _load_project(db, project_id)
    if not db.get(User, user_id):
        raise NotFoundError(f"User with ID {user_id} not found")
    _require_project_permission(db, project, actor_id, "can_share")

    if user_id == project.owner_id:
        raise ValidationError("The project owner's access cannot be changed")

    # Members may only hand out flags they hold themselves
    if actor_id != project.owner_id and not _is_admin(db, actor_id):
        actor = get_membership(db, project_id, actor_id)
        for flag, wanted in (("can_edit", can_edit), ("can_share", can_share), ("can_delete", can_delete)):
            if wanted and not getattr(actor, flag):
                raise PermissionDeniedError(f"You cannot grant {flag} on project {project_id}")

    now = now_ms()
    membership = get_membership(db, project_id, user_id)
    if membership:
        # Re-sharing replaces role and flags
        membership.role = role
        membership.can_edit = can_edit
        membership.can_share = can_share
        membership.can_delete = can_delete
        membership.last_accessed = now
    else:
        membership = UserProject(
            user_id=user_id,
            project_id=project_id,
            role=role,
            can_edit=can_edit,
            can_share=can_share,
            can_delete=can_delete,
            created_at=now,
            last_accessed=now,
        )
        db.add(membership)
    db.commit()
    db.refresh(membership)

    log.info("Shared project id=%s with user_id=%s role=%s", project_id, user_id, role)
    return membership


def remove_user_from_project(db: Session, project_id: str, actor_id: str, user_id: str) -> None:
    project = _load_project(db, project_id)
    membership = get_membership(db, project_id, user_id)
    if not membership:
        raise NotFoundError(f"User {user_id} does not have access to project {project_id}")
    if user_id == project.owner_id:
        raise ValidationError("The project owner cannot be removed")

    # Members may always leave on their own
    if actor_id != user_id:
        _require_project_permission(db, project, actor_id, "can_share")

    db.delete(membership)
    db.commit()
    log.info("Removed user_id=%s from project id=%s", user_id, project_id)


def update_last_project_access(db: Session, project_id: str, user_id: str) -> bool:
    membership = get_membership(db, project_id, user_id)
    if not membership:
        log.info("User %s has no access record for project %s", user_id, project_id)
        return False

    membership.last_accessed = now_ms()
    db.commit()
    return True


def list_project_members(db: Session, project_id: str) -> list[UserProject]:
    _load_project(db, project_id)
    return (
        db.query(UserProject)
        .filter_by(project_id=project_id)
        .order_by(UserProject.created_at)
        .all()
    )


# -----------------------------------------
# COMPONENTS
# -----------------------------------------
def _load_component(db: Session, component_id: str) -> Component:
    component = db.get(Component, component_id)
    if not component:
        raise NotFoundError(f"Component with ID {component_id} not found")
    return component


def _require_component_owner(db: Session, component: Component, user_id: str):
    if component.owner_id != user_id and not _is_admin(db, user_id):
        raise PermissionDeniedError(f"Component {component.id} belongs to another user")


def create_component(
    db: Session,
    owner_id: str,
    name: str,
    description: str,
    content: str,
    is_public: bool = False,
    tags=(),
) -> Component:
    now = now_ms()
    component = Component(
        name=_check_name(name, "Component"),
        description=description or "",
        content=_check_content(content),
        owner_id=owner_id,
        is_public=is_public,
        usage_count=0,
        tags=encode_tags(tags),
        created_at=now,
        updated_at=now,
    )
    db.add(component)
    db.commit()
    db.refresh(component)

    log.info("Created component name=%s id=%s", component.name, component.id)
    return component


def update_component(
    db: Session,
    component_id: str,
    user_id: str,
    name: str,
    description: str,
    content: str,
    is_public: bool = False,
    tags=(),
) -> Component:
    component = _load_component(db, component_id)
    _require_component_owner(db, component, user_id)

    component.name = _check_name(name, "Component")
    component.description = description or ""
    component.content = _check_content(content)
    component.is_public = is_public
    component.tags = encode_tags(tags)
    component.updated_at = now_ms()
    db.commit()
    db.refresh(component)

    log.info("Updated component name=%s id=%s", component.name, component.id)
    return component


def delete_component(db: Session, component_id: str, user_id: str) -> None:
    component = _load_component(db, component_id)
    _require_component_owner(db, component, user_id)

    db.delete(component)
    db.commit()
    log.info("Deleted component id=%s", component_id)


def _bump_usage(db: Session, component_id: str):
    # Increment in SQL so concurrent requests do not lose updates
    db.query(Component).filter_by(id=component_id).update(
        {Component.usage_count: Component.usage_count + 1},
        synchronize_session=False,
    )


def increment_component_usage(db: Session, component_id: str) -> Component:
    component = _load_component(db, component_id)
    _bump_usage(db, component_id)
    db.commit()
    db.refresh(component)

    log.info("Incremented usage for component name=%s count=%s", component.name, component.usage_count)
    return component


def clone_component(
    db: Session,
    source_id: str,
    new_name: str,
    new_description: str,
    new_owner_id: str,
) -> Component:
    source = _load_component(db, source_id)
    if not source.is_public and source.owner_id != new_owner_id:
        raise PermissionDeniedError("Cannot clone private component owned by another user")

    now = now_ms()
    clone = Component(
        name=_check_name(new_name, "Component"),
        description=new_description or "",
        content=source.content,
        owner_id=new_owner_id,
        is_public=False,
        usage_count=0,
        tags=source.tags,
        created_at=now,
        updated_at=now,
    )
    db.add(clone)
    _bump_usage(db, source_id)
    db.commit()
    db.refresh(clone)

    log.info("Cloned component %s to %s id=%s", source.name, clone.name, clone.id)
    return clone


def get_component(db: Session, component_id: str, user_id: str | None = None) -> Component:
    component = _load_component(db, component_id)
    if component.is_public or (user_id and (component.owner_id == user_id or _is_admin(db, user_id))):
        return component
    raise NotFoundError(f"Component with ID {component_id} not found")


def list_components(db: Session, user_id: str) -> list[Component]:
    """Components owned by user_id plus every public one."""
    return (
        db.query(Component)
        .filter(or_(Component.owner_id == user_id, Component.is_public.is_(True)))
        .order_by(Component.usage_count.desc(), Component.name)
        .all()
    )


# -----------------------------------------
# SETTINGS
# -----------------------------------------
def get_setting(db: Session, user_id: str, key: str) -> Setting | None:
    return db.get(Setting, setting_id(user_id, key))


def list_settings(db: Session, user_id: str) -> list[Setting]:
    return db.query(Setting).filter_by(user_id=user_id).order_by(Setting.key).all()


def set_setting(db: Session, user_id: str, key: str, value: str) -> Setting:
    key = (key or "").strip()
    if not key:
        raise ValidationError("Setting key is required")
    if not isinstance(value, str):
        raise ValidationError("Setting value must be a JSON string")

    now = now_ms()
    setting = get_setting(db, user_id, key)
    created = setting is None
    if created:
        setting = Setting(
            id=setting_id(user_id, key),
            user_id=user_id,
            key=key,
            value=value,
            created_at=now,
            updated_at=now,
        )
        db.add(setting)
    else:
        setting.value = value
        setting.updated_at = now
    db.commit()
    db.refresh(setting)

    log.info("%s setting %s for user %s", "Created" if created else "Updated", key, user_id)
    return setting


def delete_setting(db: Session, user_id: str, key: str) -> bool:
    setting = get_setting(db, user_id, key)
    if not setting:
        return False

    db.delete(setting)
    db.commit()
    log.info("Deleted setting %s for user %s", key, user_id)
    return True


def delete_all_user_settings(db: Session, user_id: str) -> int:
    count = db.query(Setting).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.commit()
    if count:
        log.info("Deleted %s settings for user %s", count, user_id)
    return count


def copy_user_settings(db: Session, source_user_id: str, target_user_id: str) -> int:
    now = now_ms()
    count = 0

    for source in list_settings(db, source_user_id):
        existing = get_setting(db, target_user_id, source.key)
        if existing:
            db.delete(existing)
            db.flush()
        db.add(Setting(
            id=setting_id(target_user_id, source.key),
            user_id=target_user_id,
            key=source.key,
            value=source.value,
            created_at=now,
            updated_at=now,
        ))
        count += 1
    db.commit()

    if count:
        log.info("Copied %s settings from user %s to user %s", count, source_user_id, target_user_id)
    else:
        log.info("No settings found to copy from user %s", source_user_id)
    return count
