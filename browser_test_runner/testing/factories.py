"""Test factories for generating test data."""

from polyfactory import Use
from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory

from browser_test_runner.models.capabilities import BrowserCapabilities
from browser_test_runner.models.result import PageResult


class PageResultFactory(DataclassFactory[PageResult]):
    """Factory for PageResult."""

    __model__ = PageResult

    message = None


class BrowserCapabilitiesFactory(ModelFactory[BrowserCapabilities]):
    """Factory for BrowserCapabilities."""

    modules = Use(tuple)
    screenshot = ".png"
    scripts = True
    parallel = True
