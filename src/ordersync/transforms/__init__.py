"""
Order Transform Registry

Resolves the ``order_transform_script`` setting to an OrderTransform.
The setting may be:

    skip_virtual_items              a registered transform name
    mypackage.transforms:clean      module path and attribute
    /etc/ordersync/transform.py     file path (attribute defaults to "transform")
    /etc/ordersync/transform.py:Cls file path and attribute

The attribute may be an OrderTransform subclass, an OrderTransform instance
or a plain function.
"""

from .base import OrderTransform, FunctionTransform, SkipVirtualItemsTransform, TransformResult
from .pipeline import TransformPipeline
from ..errors import TransformError
from typing import Type, Dict, List, Optional
import importlib
import importlib.util
import logging
import pathlib as Path
import sys

lgr = logging.getLogger(__name__)

DEFAULT_ATTRIBUTE = "transform"

# Transform Registry - maps names to transform classes
TRANSFORM_REGISTRY: Dict[str, Type[OrderTransform]] = {
    "skip_virtual_items": SkipVirtualItemsTransform,
}


def register_transform(name: str, transform_class: Type[OrderTransform]) -> None:
    """
    Register a transform class in the registry.

    Raises:
        ValueError: If name already registered or transform_class is invalid
    """
    if name in TRANSFORM_REGISTRY:
        raise ValueError(f"Transform '{name}' is already registered")

    if not isinstance(transform_class, type) or not issubclass(transform_class, OrderTransform):
        raise ValueError("Transform class must inherit from OrderTransform")

    TRANSFORM_REGISTRY[name] = transform_class
    lgr.info(f"Registered transform: {name} -> {transform_class.__name__}")


def list_available_transforms() -> List[str]:
    """Return list of registered transform names."""
    return list(TRANSFORM_REGISTRY.keys())


def _split_reference(reference: str):
    target, sep, attribute = reference.rpartition(":")
    if sep and attribute.isidentifier() and target:
        return target, attribute
    return reference, DEFAULT_ATTRIBUTE


def _import_target(target: str):
    if target.endswith(".py") or Path.Path(target).is_file():
        script_path = Path.Path(target).expanduser()
        if not script_path.exists():
            raise TransformError(f"Transform script not found: {script_path}")
        module_name = f"ordersync_transform_{script_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, str(script_path))
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(target)


def load_transform(reference: Optional[str]) -> Optional[OrderTransform]:
    """
    Resolve a transform reference (see module docstring).

    Returns:
        The transform, or None when no reference is configured

    Raises:
        TransformError: If the reference cannot be imported or is not a transform
    """
    if not reference or not str(reference).strip():
        return None
    reference = str(reference).strip()

    if reference in TRANSFORM_REGISTRY:
        return TRANSFORM_REGISTRY[reference]()

    target, attribute = _split_reference(reference)
    try:
        module = _import_target(target)
    except TransformError:
        raise
    except Exception as e:
        raise TransformError(f"Cannot load transform '{reference}': {e}") from e

    obj = getattr(module, attribute, None)
    if obj is None:
        raise TransformError(f"Transform '{reference}' has no attribute '{attribute}'")

    if isinstance(obj, type) and issubclass(obj, OrderTransform):
        transform = obj()
    elif isinstance(obj, OrderTransform):
        transform = obj
    elif callable(obj):
        transform = FunctionTransform(obj)
    else:
        raise TransformError(f"Transform '{reference}' is not callable")

    lgr.info(f"Loaded order transform {transform.get_name()} from '{reference}'")
    return transform


# Export public API
__all__ = [
    'OrderTransform',
    'FunctionTransform',
    'SkipVirtualItemsTransform',
    'TransformResult',
    'TransformPipeline',
    'TRANSFORM_REGISTRY',
    'register_transform',
    'list_available_transforms',
    'load_transform',
]
