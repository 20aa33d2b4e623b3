# catalog.py
# Service registry: the platform services the dashboard can install.
# Immutable; the monitor and the CLI look definitions up here by id.

from fleet_status.models import ServiceDefinition


class UnknownServiceError(KeyError):
    """Raised when a service id is absent from the catalog."""


DOCKER = "docker.installed"
DOCKER_COMPOSE = "docker.compose.installed"
GIT = "git.installed"

CADDY_VERIFY = "proxy.caddy.verify"
NGINX_VERIFY = "proxy.nginx.verify"


_DEFINITIONS = (
    ServiceDefinition(
        id="caddy",
        name="Caddy",
        description="Reverse proxy with automatic HTTPS",
        capability_key="caddy.installed",
        install_playbooks=("proxy.caddy.install",),
        verify_playbook=CADDY_VERIFY,
    ),
    ServiceDefinition(
        id="nginx",
        name="Nginx",
        description="Reverse proxy with Let's Encrypt certificates",
        capability_key="nginx.installed",
        install_playbooks=("proxy.nginx.install",),
        verify_playbook=NGINX_VERIFY,
    ),
    ServiceDefinition(
        id="redis",
        name="Redis",
        description="In-memory cache and key-value store",
        capability_key="redis.installed",
        install_playbooks=("docker.install_engine", "docker.install_compose"),
        prerequisites=(DOCKER, DOCKER_COMPOSE),
    ),
    ServiceDefinition(
        id="prometheus",
        name="Prometheus",
        description="Metrics collection and storage",
        capability_key="prometheus.installed",
        install_playbooks=("monitor.node_exporter.install",),
        prerequisites=(DOCKER, DOCKER_COMPOSE),
    ),
    ServiceDefinition(
        id="supabase",
        name="Supabase",
        description="Self-hosted backend stack",
        capability_key="supabase.installed",
        install_playbooks=(
            "supabase.selfhost.pull_stack",
            "supabase.selfhost.configure_env",
            "supabase.selfhost.up",
            # Declares supabase.healthy; prints no runtime report.
            "supabase.selfhost.healthcheck",
        ),
        prerequisites=(DOCKER, DOCKER_COMPOSE, GIT),
    ),
)

SERVICES: dict[str, ServiceDefinition] = {d.id: d for d in _DEFINITIONS}

# Base packages an operator installs before any platform service.
PREREQUISITE_PLAYBOOKS = (
    "system.packages.base",
    "docker.install_engine",
    "docker.install_compose",
)


def get_service(service_id: str) -> ServiceDefinition:
    try:
        return SERVICES[service_id]
    except KeyError:
        raise UnknownServiceError(f"Service '{service_id}' is not in the catalog.") from None
