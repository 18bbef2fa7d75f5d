import pytest

from aamp_types import Curve, Name, ParameterIO, ParameterType, Value


def make_curve(seed: int) -> Curve:
    return Curve(seed, seed + 1, [seed + i * 0.25 for i in range(30)])


def build_sample() -> ParameterIO:
    """One parameter of every type, plus nested lists and a hash-only key"""
    pio = ParameterIO("xml", 10)

    content = pio.root.add_object("TestContent")
    content.add("Bool", Value(ParameterType.BOOL, True))
    content.add("False", Value(ParameterType.BOOL, False))
    content.add("F32", Value(ParameterType.F32, 0.1))
    content.add("Int", Value(ParameterType.INT, -123456))
    content.add("U32", Value(ParameterType.U32, 0xDEADBEEF))
    content.add("Vec2", Value(ParameterType.VEC2, (1.0, -2.5)))
    content.add("Vec3", Value(ParameterType.VEC3, (1.0, 2.0, 3.0)))
    content.add("Vec4", Value(ParameterType.VEC4, (0.5, 0.25, 0.125, 1e-5)))
    content.add("Color", Value(ParameterType.COLOR, (1.0, 0.5, 0.0, 1.0)))
    content.add("Quat", Value(ParameterType.QUAT, (0.0, 0.0, 0.0, 1.0)))
    content.add("Str32", Value(ParameterType.STRING32, "Weapon_Sword_001"))
    content.add("Str64", Value(ParameterType.STRING64, "Actor/Enemy_Lizalfos"))
    content.add("Str256", Value(ParameterType.STRING256, "ünïcode ✓"))
    content.add("StrRef", Value(ParameterType.STRING_REF, "Weapon_Sword_001"))
    content.add("EmptyStr", Value(ParameterType.STRING_REF, ""))
    content.add("Curve1", Value(ParameterType.CURVE1, [make_curve(1)]))
    content.add("Curve2", Value(ParameterType.CURVE2, [make_curve(2), make_curve(3)]))
    content.add("BufInt", Value(ParameterType.BUFFER_INT, [1, -2, 3]))
    content.add("BufF32", Value(ParameterType.BUFFER_F32, [1.5, 2.5]))
    content.add("BufU32", Value(ParameterType.BUFFER_U32, [0, 0xFFFFFFFF]))
    content.add("BufBin", Value(ParameterType.BUFFER_BINARY, [0, 127, 255]))
    content.add("BufEmpty", Value(ParameterType.BUFFER_INT, []))
    content.add("BufStr32", Value(ParameterType.BUFFER_STRING32, ["a", "", "bc"]))
    content.add(Name(0xDEADBEEF), Value(ParameterType.F32, 1.5))

    children = pio.root.add_list("Children")
    for i in range(3):
        child = children.add_list(f"Child_{i}")
        params = child.add_object("Params")
        params.add("Index", Value(ParameterType.INT, i))
        params.add("Name", Value(ParameterType.STRING64, f"child{i}"))
    children.add_list("Empty")

    pio.root.add_object("EmptyObject")
    return pio


@pytest.fixture
def sample_pio() -> ParameterIO:
    return build_sample()


def build_nested(depth: int) -> ParameterIO:
    """A chain of depth lists below the root with one object at the bottom"""
    pio = ParameterIO()
    plist = pio.root
    for i in range(depth):
        plist = plist.add_list(f"Level_{i}")
    plist.add_object("Leaf").add("Depth", Value(ParameterType.INT, depth))
    return pio
