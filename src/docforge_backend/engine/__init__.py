"""
Document engine adapter: conversion, rendering and field scanning.

The Aspose-backed implementation lives in ``engine.aspose_engine``.
"""

from .graph import Block, DocumentGraph, ImagePayload, MemoryDocument, Remove, Replace, Skip, replace_pattern
from .interfaces import DocumentEngine, EngineKind, engine_kind_for
