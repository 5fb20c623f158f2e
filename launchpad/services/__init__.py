from .credentials import CredentialService
from .inventory import InventoryService
from .events import EventSink
from .jobs import JobService, ExecutionContext
from .output import OutputParser
from .runner import RunnerService
from .worker import WorkerPool
from .scheduler import SchedulerService
from .notification import NotificationService
