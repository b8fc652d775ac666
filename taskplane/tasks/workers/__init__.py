"""Worker 모듈

실제 Worker는 서비스 쪽에서 BaseWorker를 상속받아 @register_worker로 등록한다.
"""

from taskplane.tasks.workers.base import BaseWorker

__all__ = ["BaseWorker"]
