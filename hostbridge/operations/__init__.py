"""Operations (integrity, transfer, periodic tasks, services)"""
from .integrity import local_digest, remote_digest, verify
from .transfer import TransferReport, upload_file, download_file, upload_directory
from .cron import (
    EmptyTablePredicate, install_periodic_task, list_periodic_tasks, clear_periodic_tasks,
)
from .services import (
    Supervisor, SystemdSupervisor, service_name,
    install_service, start_service, stop_service, restart_service,
)

__all__ = [
    "local_digest", "remote_digest", "verify",
    "TransferReport", "upload_file", "download_file", "upload_directory",
    "EmptyTablePredicate", "install_periodic_task", "list_periodic_tasks", "clear_periodic_tasks",
    "Supervisor", "SystemdSupervisor", "service_name",
    "install_service", "start_service", "stop_service", "restart_service",
]
