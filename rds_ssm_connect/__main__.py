import uvicorn

from rds_ssm_connect.core.config import settings


def main():
    uvicorn.run(
        "rds_ssm_connect.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
