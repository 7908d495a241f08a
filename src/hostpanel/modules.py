"""Entity handler registry.

This module is the facade the task processor and the CLI import from; the
strategies live in the ``modules_*`` submodules.
"""

from __future__ import annotations

from hostpanel.db import EntityType
from hostpanel.modules_account import FtpUserModule, UserModule
from hostpanel.modules_common import (  # noqa: F401
    ActionRunner,
    ContextCache,
    EngineContext,
    ModuleStrategy,
    Reconciler,
    RowLoader,
    StrategyFactory,
)
from hostpanel.modules_dns import CustomDnsModule
from hostpanel.modules_mail import MailModule
from hostpanel.modules_plugin import PluginModule
from hostpanel.modules_sql import SqlDatabaseModule, SqlUserModule
from hostpanel.modules_ssl import SslCertificateModule
from hostpanel.modules_web import AliasModule, DomainModule, SubAliasModule, SubdomainModule

MODULE_REGISTRY: dict[EntityType, StrategyFactory] = {
    EntityType.USER: UserModule,
    EntityType.SSL: SslCertificateModule,
    EntityType.DOMAIN: DomainModule,
    EntityType.SUBDOMAIN: SubdomainModule,
    EntityType.ALIAS: AliasModule,
    EntityType.SUBALIAS: SubAliasModule,
    EntityType.CUSTOM_DNS: CustomDnsModule,
    EntityType.FTP_USER: FtpUserModule,
    EntityType.MAIL: MailModule,
    EntityType.SQL_DATABASE: SqlDatabaseModule,
    EntityType.SQL_USER: SqlUserModule,
    EntityType.PLUGIN: PluginModule,
}


def get_module(entity_type: EntityType | str) -> StrategyFactory:
    try:
        return MODULE_REGISTRY[EntityType(entity_type)]
    except (KeyError, ValueError):
        raise ValueError(f"No handler registered for entity type '{entity_type}'") from None
