from .catalog import *  # noqa
from .bom import *  # noqa
from .purchasing import *  # noqa

# Platform event-bus tables (transactional outbox + webhook subscriptions)
from app.events.outbox import *  # noqa
from app.events.subscriptions import *  # noqa
