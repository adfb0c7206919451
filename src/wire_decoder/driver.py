import logging
from typing import Any, Optional

from .cache import CodeCache
from .conversion import BlockId
from .errors import UnsupportedRequestError
from .process import CodeRequest, DataRequest, DecodeProcess, Done, Suspended

logger = logging.getLogger(__name__)


class DecodeDriver:
    """
    Runs one decode process to completion, answering its data requests.

    Requests are served one at a time, in the order the process makes them.
    Only code requests are supported; code is read through the shared cache at
    the block the decoded item belongs to.
    """

    def __init__(self, code_cache: CodeCache, block: Optional[BlockId]) -> None:
        self.code_cache = code_cache
        self.block = block

    def run(self, process: DecodeProcess) -> Any:
        step = process.start()
        requests_served = 0
        while True:
            if isinstance(step, Done):
                logger.debug(f"Decode finished after {requests_served} request(s).")
                return step.result
            if not isinstance(step, Suspended):
                raise TypeError(f"Decode process returned an unknown step: {step!r}.")
            response = self.fulfill(step.request)
            requests_served += 1
            step = process.resume(response)

    def fulfill(self, request: DataRequest) -> Any:
        if isinstance(request, CodeRequest):
            return self.code_cache.get(request.address, self.block)
        raise UnsupportedRequestError(request)
