class LaunchpadError(Exception):
    """Base class for errors raised by the execution pipeline."""


class CredentialDecodeError(LaunchpadError):
    """The stored secret blob could not be decrypted or validated."""


class InventoryWriteError(LaunchpadError):
    """Job artifacts (inventory, playbook, private key) could not be written."""


class LaunchError(LaunchpadError):
    """The automation runner could not be spawned."""


class JobNotFoundError(LaunchpadError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(LaunchpadError):
    def __init__(self, job_id: int, current: str, target: str):
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class TemplateNotFoundError(LaunchpadError):
    def __init__(self, template_id: int):
        super().__init__(f"Template {template_id} not found")
        self.template_id = template_id
