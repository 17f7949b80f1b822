"""Dependency resolution for modpm."""

from .cache import PackageCache
from .cache_lock import CacheLock
from .checker import (
    Checker, IdentChecker, ModChecker, SumChecker, VersionChecker, check_dependency_sum,
)
from .dependency_graph import DepGraph, ModuleVersion
from .downloader import (
    DepDownloader, DownloadOptions, Downloader, GitDownloader, OciDownloader, OfflineDownloader,
)
from .mvs import ReqsGraph, build_list, downgrade, update_build_list, upgrade, upgrade_all
from .resolver import DepsResolver
from .vendor import Vendorer
from .visitor import (
    ArchiveVisitor, PkgVisitor, RemoteVisitor, VirtualPkgVisitor, Visitor, select_visitor,
)

__all__ = [
    'PackageCache',
    'CacheLock',
    'Checker',
    'ModChecker',
    'IdentChecker',
    'VersionChecker',
    'SumChecker',
    'check_dependency_sum',
    'DepGraph',
    'ModuleVersion',
    'Downloader',
    'DownloadOptions',
    'DepDownloader',
    'GitDownloader',
    'OciDownloader',
    'OfflineDownloader',
    'ReqsGraph',
    'build_list',
    'upgrade_all',
    'upgrade',
    'downgrade',
    'update_build_list',
    'DepsResolver',
    'Vendorer',
    'Visitor',
    'PkgVisitor',
    'VirtualPkgVisitor',
    'ArchiveVisitor',
    'RemoteVisitor',
    'select_visitor',
]
