import logging
import os

from aggregate_executor.api.app import create_app
from aggregate_executor.databases.config_manager import ConfigurationManager


def main():
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = ConfigurationManager().load_app_config()
    app = create_app(config)

    host = os.getenv("AGGREGATE_HOST", "0.0.0.0")
    port = int(os.getenv("AGGREGATE_PORT", "7071"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
