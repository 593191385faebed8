"""Application-wide constants."""

# Build status values (runtime lifecycle of a website's preview)
class BuildStatus:
    """Build status constants."""
    PENDING = "pending"
    BUILDING = "building"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


# Explicit allowed build status transitions.
# building -> stopped is the cancellation path for a stop issued mid-build.
ALLOWED_BUILD_TRANSITIONS: dict[str, set[str]] = {
    BuildStatus.PENDING: {BuildStatus.BUILDING, BuildStatus.RUNNING},
    BuildStatus.BUILDING: {BuildStatus.RUNNING, BuildStatus.FAILED, BuildStatus.STOPPED},
    BuildStatus.RUNNING: {BuildStatus.STOPPED, BuildStatus.FAILED},
    BuildStatus.STOPPED: {BuildStatus.BUILDING},
    BuildStatus.FAILED: {BuildStatus.BUILDING},
}


class ProjectType:
    """Recognized project archetypes."""
    STATIC = "static"
    REACT = "react"
    VITE = "vite"
    REACT_VITE = "react-vite"

    ALL = (STATIC, REACT, VITE, REACT_VITE)
    PROCESS_BACKED = (REACT, VITE, REACT_VITE)


class WebsiteStatus:
    """Website lifecycle status constants."""
    ACTIVE = "active"
    ARCHIVED = "archived"
    DRAFT = "draft"

    ALL = (ACTIVE, ARCHIVED, DRAFT)


class ChangeStatus:
    """Change history entry status constants."""
    PENDING = "pending"
    APPLIED = "applied"
    REVERTED = "reverted"


# Files the build workspace owns; never synced from or exported to the database
WORKSPACE_RESERVED = ("node_modules",)
DEPENDENCY_MANIFEST = "package.json"

# Lifecycle scripts rejected in uploaded package.json files
FORBIDDEN_PACKAGE_SCRIPTS = ("preinstall", "install", "postinstall")

# Number of recent changes embedded in website detail responses
RECENT_CHANGES_LIMIT = 10
