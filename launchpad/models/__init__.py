from .job import Job, JobEvent, JobStatus, EventLevel, TERMINAL_STATUSES, ACTIVE_STATUSES
from .template import Playbook, Template, Schedule
from .inventory import Inventory, Host
from .credential import Credential, CredentialType
