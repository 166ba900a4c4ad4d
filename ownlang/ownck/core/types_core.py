# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal type core for the Program Model.

TypeIds are opaque ints indexing into a TypeTable. The verifier only needs to
answer a handful of questions about a type: is it Copy, is it a reference (and
which kind), what are a struct's fields, does it hold a reference-counted
allocation, and is that allocation safe to share across spawned units.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple


TypeId = int  # opaque handle into the TypeTable


class TypeKind(Enum):
	"""Kinds of types understood by the verifier."""

	SCALAR = auto()
	STRUCT = auto()
	ENUM = auto()
	REF = auto()
	RC = auto()       # reference-counted handle (Rc/Arc)
	HANDLE = auto()   # join handle of a spawned unit
	UNKNOWN = auto()


@dataclass(frozen=True)
class TypeDef:
	"""Definition of a type stored in the TypeTable."""

	kind: TypeKind
	name: str
	param_types: Tuple[TypeId, ...] = ()
	ref_mut: bool | None = None  # only meaningful for TypeKind.REF
	fields: Tuple[Tuple[str, TypeId], ...] = ()  # STRUCT, in declaration order
	variants: Tuple[Tuple[str, Tuple[TypeId, ...]], ...] = ()  # ENUM arms with payloads
	copy: bool = False
	thread_safe: bool = False  # only meaningful for TypeKind.RC


class TypeTable:
	"""
	Type table that owns TypeIds.

	Scalars are Copy. Structs and enums are Copy only when declared so.
	Shared references are Copy; mutable references move.
	"""

	def __init__(self) -> None:
		self._defs: Dict[TypeId, TypeDef] = {}
		self._next_id: TypeId = 1  # reserve 0 for "invalid"
		self._by_name: Dict[str, TypeId] = {}
		self._cache: Dict[tuple, TypeId] = {}

	def fork(self) -> "TypeTable":
		"""Independent copy: types interned into the fork never reach this table."""
		other = TypeTable()
		other._defs = dict(self._defs)
		other._next_id = self._next_id
		other._by_name = dict(self._by_name)
		other._cache = dict(self._cache)
		return other

	def new_scalar(self, name: str) -> TypeId:
		"""Register a scalar type (e.g., Int, Bool) and return its TypeId."""
		return self._add(TypeDef(kind=TypeKind.SCALAR, name=name, copy=True), named=True)

	def _ensure_named(self, name: str, make) -> TypeId:
		ty = self._by_name.get(name)
		if ty is None:
			ty = make()
		return ty

	def ensure_int(self) -> TypeId:
		return self._ensure_named("Int", lambda: self.new_scalar("Int"))

	def ensure_bool(self) -> TypeId:
		return self._ensure_named("Bool", lambda: self.new_scalar("Bool"))

	def ensure_unit(self) -> TypeId:
		return self._ensure_named("Unit", lambda: self.new_scalar("Unit"))

	def ensure_string(self) -> TypeId:
		"""Owned, growable string: not Copy, needs a drop."""
		return self._ensure_named(
			"String",
			lambda: self._add(TypeDef(kind=TypeKind.STRUCT, name="String"), named=True),
		)

	def ensure_unknown(self) -> TypeId:
		"""Unknown types are treated as move-only."""
		return self._ensure_named(
			"Unknown",
			lambda: self._add(TypeDef(kind=TypeKind.UNKNOWN, name="Unknown"), named=True),
		)

	def declare_struct(self, name: str, fields: List[Tuple[str, TypeId]], *, copy: bool = False) -> TypeId:
		"""Register a nominal struct type. Field order is declaration order."""
		if name in self._by_name:
			raise ValueError(f"type '{name}' is already declared")
		return self._add(TypeDef(kind=TypeKind.STRUCT, name=name, fields=tuple(fields), copy=copy), named=True)

	def declare_enum(
		self, name: str, variants: List[Tuple[str, List[TypeId]]], *, copy: bool = False
	) -> TypeId:
		"""Register a nominal enum type whose variants may carry payloads."""
		if name in self._by_name:
			raise ValueError(f"type '{name}' is already declared")
		arms = tuple((vname, tuple(payload)) for vname, payload in variants)
		return self._add(TypeDef(kind=TypeKind.ENUM, name=name, variants=arms, copy=copy), named=True)

	def ensure_ref(self, inner: TypeId, *, mut: bool = False) -> TypeId:
		"""Return a stable reference TypeId to `inner`, creating it once."""
		key = ("ref", inner, mut)
		if key not in self._cache:
			name = f"&mut {self.get(inner).name}" if mut else f"&{self.get(inner).name}"
			self._cache[key] = self._add(
				TypeDef(kind=TypeKind.REF, name=name, param_types=(inner,), ref_mut=mut, copy=not mut)
			)
		return self._cache[key]

	def ensure_rc(self, inner: TypeId, *, thread_safe: bool = False) -> TypeId:
		"""Return a stable Rc<inner> (or Arc<inner> when thread_safe) TypeId."""
		key = ("rc", inner, thread_safe)
		if key not in self._cache:
			name = f"{'Arc' if thread_safe else 'Rc'}<{self.get(inner).name}>"
			self._cache[key] = self._add(
				TypeDef(kind=TypeKind.RC, name=name, param_types=(inner,), thread_safe=thread_safe)
			)
		return self._cache[key]

	def ensure_handle(self) -> TypeId:
		return self._ensure_named(
			"JoinHandle",
			lambda: self._add(TypeDef(kind=TypeKind.HANDLE, name="JoinHandle"), named=True),
		)

	def _add(self, td: TypeDef, *, named: bool = False) -> TypeId:
		ty_id = self._next_id
		self._next_id += 1
		self._defs[ty_id] = td
		if named:
			self._by_name[td.name] = ty_id
		return ty_id

	def get(self, ty: TypeId) -> TypeDef:
		"""Fetch the TypeDef for a given TypeId."""
		return self._defs[ty]

	def lookup(self, name: str) -> Optional[TypeId]:
		"""Find a nominal or scalar type by name."""
		return self._by_name.get(name)

	def is_copy(self, ty: Optional[TypeId]) -> bool:
		"""Unknown (None) types are conservatively move-only."""
		if ty is None:
			return False
		return self.get(ty).copy

	def is_ref(self, ty: Optional[TypeId]) -> bool:
		return ty is not None and self.get(ty).kind is TypeKind.REF

	def is_mut_ref(self, ty: Optional[TypeId]) -> bool:
		return self.is_ref(ty) and self.get(ty).ref_mut is True  # type: ignore[arg-type]

	def is_rc(self, ty: Optional[TypeId]) -> bool:
		return ty is not None and self.get(ty).kind is TypeKind.RC

	def needs_drop(self, ty: Optional[TypeId]) -> bool:
		"""Copy values and references have no destruction step."""
		if ty is None:
			return True
		td = self.get(ty)
		return not td.copy and td.kind is not TypeKind.REF

	def deref(self, ty: Optional[TypeId]) -> Optional[TypeId]:
		"""Strip one reference or Rc layer; other types are returned unchanged."""
		if ty is None:
			return None
		td = self.get(ty)
		if td.kind in (TypeKind.REF, TypeKind.RC):
			return td.param_types[0]
		return ty

	def field_type(self, ty: Optional[TypeId], name: str) -> Optional[TypeId]:
		"""Resolve a struct field type, auto-dereferencing references and Rc handles."""
		base = ty
		while base is not None and self.get(base).kind in (TypeKind.REF, TypeKind.RC):
			base = self.deref(base)
		if base is None:
			return None
		for fname, fty in self.get(base).fields:
			if fname == name:
				return fty
		return None

	def holds_refs(self, ty: Optional[TypeId], _seen: Optional[set] = None) -> bool:
		"""True when a value of this type can carry a borrow (directly or in a field)."""
		if ty is None:
			return False
		seen = _seen if _seen is not None else set()
		if ty in seen:
			return False
		seen.add(ty)
		td = self.get(ty)
		if td.kind is TypeKind.REF:
			return True
		if td.kind is TypeKind.STRUCT:
			return any(self.holds_refs(fty, seen) for _, fty in td.fields)
		if td.kind is TypeKind.ENUM:
			return any(self.holds_refs(p, seen) for _, payload in td.variants for p in payload)
		return False

	def holds_mut_refs(self, ty: Optional[TypeId], _seen: Optional[set] = None) -> bool:
		"""True when a value of this type carries an exclusive borrow, directly or in a field, payload, or Rc."""
		if ty is None:
			return False
		seen = _seen if _seen is not None else set()
		if ty in seen:
			return False
		seen.add(ty)
		td = self.get(ty)
		if td.kind is TypeKind.REF:
			return td.ref_mut is True
		if td.kind is TypeKind.RC:
			return self.holds_mut_refs(td.param_types[0], seen)
		if td.kind is TypeKind.STRUCT:
			return any(self.holds_mut_refs(fty, seen) for _, fty in td.fields)
		if td.kind is TypeKind.ENUM:
			return any(self.holds_mut_refs(p, seen) for _, payload in td.variants for p in payload)
		return False

	def is_thread_safe(self, ty: Optional[TypeId], _seen: Optional[set] = None) -> bool:
		"""Rc handles anywhere inside a value make it unsafe to move into a spawned unit."""
		if ty is None:
			return True
		seen = _seen if _seen is not None else set()
		if ty in seen:
			return True
		seen.add(ty)
		td = self.get(ty)
		if td.kind is TypeKind.RC:
			return td.thread_safe and self.is_thread_safe(td.param_types[0], seen)
		if td.kind is TypeKind.STRUCT:
			return all(self.is_thread_safe(fty, seen) for _, fty in td.fields)
		if td.kind is TypeKind.ENUM:
			return all(self.is_thread_safe(p, seen) for _, payload in td.variants for p in payload)
		if td.kind is TypeKind.REF:
			return self.is_thread_safe(td.param_types[0], seen)
		return True


__all__ = ["TypeId", "TypeKind", "TypeDef", "TypeTable"]
