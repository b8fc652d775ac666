#!/usr/bin/env python
"""Task Consumer Worker 실행 스크립트

사용법:
    python run_worker.py --modules myservice.workers                 # 등록된 모든 작업 유형 처리
    python run_worker.py --modules myservice.workers --types build   # 특정 작업 유형만 처리
    python run_worker.py --modules myservice.workers --worker-id w1  # Worker ID 지정
"""

import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Task Consumer Worker")
    parser.add_argument(
        "--types",
        nargs="*",
        default=None,
        help="처리할 작업 유형 (예: sync build). 지정하지 않으면 등록된 모든 유형 처리.",
    )
    parser.add_argument(
        "--modules",
        nargs="*",
        default=[m for m in os.getenv("TASK_WORKER_MODULES", "").split(",") if m],
        help="Worker가 정의된 모듈 (기본: TASK_WORKER_MODULES 환경변수, 쉼표 구분)",
    )
    parser.add_argument(
        "--worker-id",
        default=None,
        help="Worker ID (기본: 자동 생성)",
    )

    args = parser.parse_args()

    from taskplane.tasks.consumer import run_consumer

    try:
        asyncio.run(
            run_consumer(
                task_types=args.types,
                worker_id=args.worker_id,
                modules=args.modules,
            )
        )
    except KeyboardInterrupt:
        print("\nWorker stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
