"""Poll cycle scheduling and snapshot assembly."""

from pycarsoc.polling.assembly import assemble_snapshot
from pycarsoc.polling.scheduler import PollScheduler, QueryFn

__all__ = ["PollScheduler", "QueryFn", "assemble_snapshot"]
