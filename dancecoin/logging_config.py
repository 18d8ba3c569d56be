import logging.config
import sys

# 원장 정합성 위반 / 불일치 기록 전용 로거 (수동 감사 대상)
AUDIT_LOGGER = "dancecoin.audit"


def setup_logging(log_level: str = "INFO", environment: str = "development", sql_echo: bool = False):
    """
    dictConfig 기반 로깅 설정

    - console: 일반 로그 (stdout)
    - error_console: WARNING 이상 상세 로그 (stderr, 파일 위치 포함)
    - audit: dancecoin.audit 로거 - 레벨 설정과 관계없이 항상 기록
    """
    log_level = log_level.upper()
    simple_format = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    if environment == "production":
        # CloudWatch가 타임스탬프를 붙임
        simple_format = "%(levelname)-8s | %(name)s | %(message)s"

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {"format": simple_format},
            "detailed": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)s\n%(pathname)s:%(lineno)d\n%(message)s",
            },
            "audit": {
                "format": "%(asctime)s | AUDIT | %(levelname)s | %(message)s",
            },
        },
        "handlers": {
            "console": {
                "formatter": "simple",
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
            },
            "error_console": {
                "formatter": "detailed",
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": "WARNING",
            },
            "audit": {
                "formatter": "audit",
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": log_level,
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            "dancecoin": {
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": False,
            },
            AUDIT_LOGGER: {
                "handlers": ["audit"],
                "level": "INFO",
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if sql_echo else "WARNING",
            },
            "botocore": {"level": "WARNING"},
            "boto3": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)
