"""Gunicorn 部署配置

用法:
  gunicorn --config deploy/gunicorn.conf.py infragate.web.app:app

进行中的流水线、审批记录与执行锁都保存在进程内存中，
因此固定单 worker，通过线程数扩展并发请求。
"""

import os

from infragate.core.config import init_config

init_config(os.getenv("INFRAGATE_CONFIG", "configs/default.yml"))

bind = os.getenv("INFRAGATE_BIND", "127.0.0.1:8888")

workers = 1
worker_class = "gthread"
threads = int(os.getenv("INFRAGATE_HTTP_THREADS", "8"))
# 审批请求为短连接，流水线在后台线程执行，不受请求超时影响
timeout = 60

accesslog = os.getenv("INFRAGATE_ACCESS_LOG", "-")
errorlog = "-"
loglevel = os.getenv("INFRAGATE_LOG_LEVEL", "info").lower()

# 重启 worker 会丢失进行中的流水线，不设置 max_requests
graceful_timeout = 30
