#!/usr/bin/env python3
"""
SCIM User Provisioning CLI
"""
import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from scim_provisioning import (
    ProvisioningService,
    ScimConfig,
    ScimError,
    build_predicate,
    load_config,
)
from scim_provisioning.auth import generate_client_id, generate_client_secret
from scim_provisioning.logging import configure_logging
from scim_provisioning.schemas import get_schema, get_schemas, get_service_provider_config
from scim_provisioning.store import UserStoreError, build_store


def load_json(file: str) -> dict | list:
    path = Path(file)
    if not path.exists():
        return []
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def get_config(args) -> ScimConfig:
    try:
        config = load_config(args.config)
    except (RuntimeError, ValidationError, json.JSONDecodeError) as e:
        print(f"错误: 配置文件不存在或格式错误: {e}")
        sys.exit(1)
    configure_logging(config)
    return config


def get_service(args) -> ProvisioningService:
    config = get_config(args)
    return ProvisioningService(config, build_store(config.store_path))


# ========== 服务命令 ==========

def cmd_serve(args):
    import uvicorn
    from scim_provisioning import create_app

    config = get_config(args)
    uvicorn.run(create_app(config), host=args.host, port=args.port)


def cmd_config(args):
    print_json(get_service_provider_config(get_config(args)))


# ========== schema 命令 ==========

def cmd_schema_list(args):
    config = get_config(args)
    schemas = get_schemas(config)
    if args.format == "json":
        print_json(schemas)
    else:
        print(f"共 {len(schemas)} 个 schema:\n")
        for s in schemas:
            print(f"  {s['name']} [{s['id']}] ({len(s['attributes'])} 个属性)")


def cmd_schema_get(args):
    schema = get_schema(get_config(args), args.urn)
    if schema is None:
        print(f"schema 不存在: {args.urn}")
        return 1
    print_json(schema)


# ========== filter 命令 ==========

def cmd_filter(args):
    try:
        predicate = build_predicate(args.expression)
    except ScimError as e:
        print(f"✗ {e.scim_type}: {e.detail}")
        return 1
    if predicate is None:
        print("filter 为空，查询结果为空列表")
        return 0
    print_json({
        "field": predicate.field,
        "operator": predicate.operator.value,
        "literal": predicate.literal,
        "pattern": predicate.pattern,
    })


# ========== 用户命令 ==========

def cmd_user_list(args):
    service = get_service(args)
    try:
        if args.filter:
            users = service.list_users(args.filter)["Resources"]
        else:
            users = [service.mapper.encode(r, include_schemas=False) for r in service.store.all()]
    except ScimError as e:
        print(f"✗ {e.scim_type}: {e.detail}")
        return 1

    if args.format == "json":
        print_json(users)
    else:
        print(f"共 {len(users)} 个用户:\n")
        for u in users:
            status = "✓" if u["active"] else "✗"
            print(f"  {status} {u['userName']} ({u['displayName']}) [id: {u['id']}]")


def cmd_user_get(args):
    service = get_service(args)
    try:
        print_json(service.get_user(args.id))
    except ScimError as e:
        print(f"✗ {e.detail}")
        return 1


def cmd_user_create(args):
    service = get_service(args)
    data = load_json(args.file)
    users = data if isinstance(data, list) else [data]
    has_error = False
    for u in users:
        try:
            result = service.create_user(u)
            print(f"✓ 创建: {result['userName']} [id: {result['id']}]")
        except (ScimError, UserStoreError) as e:
            detail = e.detail if isinstance(e, ScimError) else str(e)
            print(f"✗ {u.get('userName', '?')}: {detail}")
            has_error = True
    return 1 if has_error else 0


def cmd_user_deactivate(args):
    service = get_service(args)
    try:
        service.deactivate_user(args.id)
        print(f"✓ 停用: {args.id}")
        return 0
    except ScimError as e:
        print(f"✗ {e.detail}")
        return 1


# ========== 客户端命令 ==========

def cmd_client_new(args):
    """生成新的 client_credentials，写入配置文件的 clients 列表"""
    client = {
        "client_id": generate_client_id(),
        "client_secret": generate_client_secret(),
    }
    if args.organization:
        client["organization"] = args.organization
    print_json(client)


# ========== 主函数 ==========

def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(prog='scim-cli', description='SCIM User Provisioning CLI')
    parser.add_argument('--config', default=None, help='配置文件，默认 scim-config.json')
    subparsers = parser.add_subparsers(dest='command', help='命令')

    p = subparsers.add_parser('serve', help='启动 SCIM 服务')
    p.add_argument('--host', default='0.0.0.0')
    p.add_argument('--port', type=int, default=8000)
    p.set_defaults(func=cmd_serve)

    p = subparsers.add_parser('config', help='输出 ServiceProviderConfig')
    p.set_defaults(func=cmd_config)

    p = subparsers.add_parser('filter', help='解析 filter 表达式')
    p.add_argument('expression')
    p.set_defaults(func=cmd_filter)

    # schema 命令
    schema_parser = subparsers.add_parser('schema', help='schema 查询')
    schema_sub = schema_parser.add_subparsers(dest='action')

    p = schema_sub.add_parser('list', help='列出 schema')
    p.add_argument('--format', choices=['table', 'json'], default='table')
    p.set_defaults(func=cmd_schema_list)

    p = schema_sub.add_parser('get', help='获取 schema')
    p.add_argument('urn')
    p.set_defaults(func=cmd_schema_get)

    # user 命令
    user_parser = subparsers.add_parser('user', help='用户管理')
    user_sub = user_parser.add_subparsers(dest='action')

    p = user_sub.add_parser('list', help='列出用户')
    p.add_argument('--filter', default=None, help='SCIM filter，例: userName sw "j"')
    p.add_argument('--format', choices=['table', 'json'], default='table')
    p.set_defaults(func=cmd_user_list)

    p = user_sub.add_parser('get', help='获取用户')
    p.add_argument('id')
    p.set_defaults(func=cmd_user_get)

    p = user_sub.add_parser('create', help='创建用户')
    p.add_argument('file', help='JSON 文件 (SCIM User 文档或列表)')
    p.set_defaults(func=cmd_user_create)

    p = user_sub.add_parser('deactivate', help='停用用户')
    p.add_argument('id')
    p.set_defaults(func=cmd_user_deactivate)

    # client 命令
    client_parser = subparsers.add_parser('client', help='OAuth2 客户端')
    client_sub = client_parser.add_subparsers(dest='action')

    p = client_sub.add_parser('new', help='生成 client_id / client_secret')
    p.add_argument('--organization', default=None, help='绑定的组织')
    p.set_defaults(func=cmd_client_new)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if hasattr(args, 'func'):
        return args.func(args) or 0
    else:
        parser.parse_args([args.command, '-h'])
        return 0


if __name__ == "__main__":
    sys.exit(main())
