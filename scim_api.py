#!/usr/bin/env python3
"""
SCIM User Provisioning REST API

uvicorn scim_api:app --port 8000
配置文件: scim-config.json (或环境变量 SCIM_CONFIG)
"""
from scim_provisioning import create_app, load_config
from scim_provisioning.logging import configure_logging

config = load_config()
configure_logging(config)

app = create_app(config)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
