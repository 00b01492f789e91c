from __future__ import annotations

import math
import unittest

import numpy as np

from gradexpr import Binding, CompileOptions, compile_expression, interpret

RIGHT = CompileOptions(pow_from_right=True)


class EvaluateResultTests(unittest.TestCase):
    def _check(self, cases, *, places: int = 7) -> None:
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertAlmostEqual(compile_expression(source).evaluate(), expected, places=places)

    def test_literals_and_grouping(self) -> None:
        self._check(
            [
                ("1", 1),
                ("1 ", 1),
                ("(1)", 1),
                ("pi", math.pi),
                ("atan(1)*4 - pi", 0),
                ("e", math.e),
                ("2+1", 3),
                ("(((2+(1))))", 3),
                ("3+2", 5),
                ("3+2+4", 9),
                ("(3+2)+4", 9),
                ("3+(2+4)", 9),
                ("(3+2+4)", 9),
                ("3*2*4", 24),
                ("(3*2)*4", 24),
                ("3*(2*4)", 24),
                ("(3*2*4)", 24),
            ]
        )

    def test_left_to_right_arithmetic(self) -> None:
        self._check(
            [
                ("3-2-4", -3),
                ("(3-2)-4", -3),
                ("3-(2-4)", 5),
                ("(3-2-4)", -3),
                ("3/2/4", 3.0 / 2.0 / 4.0),
                ("(3/2)/4", 3.0 / 2.0 / 4.0),
                ("3/(2/4)", 3.0 / (2.0 / 4.0)),
                ("(3/2/4)", 3.0 / 2.0 / 4.0),
                ("(3*2/4)", 3.0 * 2.0 / 4.0),
                ("(3/2*4)", 3.0 / 2.0 * 4.0),
                ("3*(2/4)", 3.0 * (2.0 / 4.0)),
                ("7%4", 3),
                ("-7%4", -3),
                ("7.5%2", 1.5),
            ]
        )

    def test_function_application(self) -> None:
        self._check(
            [
                ("asin sin .5", 0.5),
                ("sin asin .5", 0.5),
                ("ln exp .5", 0.5),
                ("exp ln .5", 0.5),
                ("asin sin-.5", -0.5),
                ("asin sin-0.5", -0.5),
                ("asin sin -0.5", -0.5),
                ("asin (sin -0.5)", -0.5),
                ("asin (sin (-0.5))", -0.5),
                ("asin sin (-0.5)", -0.5),
                ("(asin sin (-0.5))", -0.5),
                ("log10 1000", 3),
                ("log10 1e3", 3),
                ("log10(1000)", 3),
                ("log10(1e3)", 3),
                ("log10 1.0e3", 3),
                ("10^5*5e-5", 5),
                ("log 1000", 3),
                ("ln (e^10)", 10),
                ("100^.5+1", 11),
                ("100 ^.5+1", 11),
                ("100^+.5+1", 11),
                ("100^--.5+1", 11),
                ("100^---+-++---++-+-+-.5+1", 11),
                ("100^-.5+1", 1.1),
                ("100^---.5+1", 1.1),
                ("100^+---.5+1", 1.1),
                ("1e2^+---.5e0+1e0", 1.1),
                ("--(1e2^(+(-(-(-.5e0))))+1e0)", 1.1),
                ("sqrt 100 + 7", 17),
                ("sqrt 100 * 7", 70),
                ("sqrt (100 * 100)", 100),
                ("round 2.5", 3),
                ("round -2.5", -2),
                ("floor -1.5", -2),
                ("ceil -1.5", -1),
                ("abs -4", 4),
                ("sign -4", -1),
                ("sign 0", 0),
            ]
        )

    def test_comma_evaluates_to_its_right_operand(self) -> None:
        self._check(
            [
                ("1,2", 2),
                ("1,2+1", 3),
                ("1+1,2+2,2+1", 3),
                ("1,2,3", 3),
                ("(1,2),3", 3),
                ("1,(2,3)", 3),
                ("-(1,(2,3))", -3),
            ]
        )

    def test_two_argument_functions(self) -> None:
        self._check(
            [
                ("2^2", 4),
                ("pow(2,2)", 4),
                ("atan2(1,1)", math.atan2(1, 1)),
                ("atan2(1,2)", math.atan2(1, 2)),
                ("atan2(2,1)", math.atan2(2, 1)),
                ("atan2(3,4)", math.atan2(3, 4)),
                ("atan2(3+3,4*2)", math.atan2(6, 8)),
                ("atan2(3+3,(4*2))", math.atan2(6, 8)),
                ("atan2((3+3),4*2)", math.atan2(6, 8)),
                ("atan2((3+3),(4*2))", math.atan2(6, 8)),
            ]
        )

    def test_natural_log_option(self) -> None:
        self.assertAlmostEqual(interpret("log 1000"), 3.0)
        self.assertAlmostEqual(interpret("log e", options=CompileOptions(natural_log=True)), 1.0)
        self.assertAlmostEqual(interpret("log10 1000", options=CompileOptions(natural_log=True)), 3.0)


class EvaluateSpecialValueTests(unittest.TestCase):
    def test_nan_results(self) -> None:
        for source in (
            "0/0",
            "1%0",
            "1%(1%0)",
            "(1%0)%1",
            "fac(-1)",
            "ncr(2, 4)",
            "ncr(-2, 4)",
            "ncr(2, -4)",
            "npr(2, 4)",
            "npr(-2, 4)",
            "npr(2, -4)",
            "sqrt -1",
            "acos 2",
        ):
            with self.subTest(source=source):
                self.assertTrue(math.isnan(compile_expression(source).evaluate()))

    def test_infinite_results(self) -> None:
        for source in (
            "1/0",
            "log(0)",
            "pow(2,10000000)",
            "fac(300)",
            "ncr(300,100)",
            "ncr(300000,100)",
            "ncr(300000,100)*8",
            "npr(3,2)*ncr(300000,100)",
            "npr(100,90)",
            "npr(30,25)",
        ):
            with self.subTest(source=source):
                self.assertTrue(math.isinf(compile_expression(source).evaluate()))

    def test_division_by_zero_keeps_sign(self) -> None:
        self.assertEqual(interpret("1/0"), math.inf)
        self.assertEqual(interpret("-1/0"), -math.inf)
        self.assertEqual(interpret("log 0"), -math.inf)

    def test_nan_propagates_through_variables(self) -> None:
        expr = compile_expression("x*2+1", ["x"])
        self.assertTrue(math.isnan(expr.evaluate([math.nan])))

    def test_combinatorics(self) -> None:
        cases = [
            ("fac 0", 1),
            ("fac 0.2", 1),
            ("fac 1", 1),
            ("fac 2", 2),
            ("fac 3", 6),
            ("fac 4.8", 24),
            ("fac 10", 3628800),
            ("ncr(0,0)", 1),
            ("ncr(10,1)", 10),
            ("ncr(10,0)", 1),
            ("ncr(10,10)", 1),
            ("ncr(16,7)", 11440),
            ("ncr(16,8)", 12870),
            ("ncr(20,7)", 77520),
            ("npr(0,0)", 1),
            ("npr(10,1)", 10),
            ("npr(10,0)", 1),
            ("npr(10,10)", 3628800),
            ("npr(20,5)", 1860480),
            ("npr(100,4)", 94109400),
        ]
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertEqual(interpret(source), expected)


class EvaluateVariableTests(unittest.TestCase):
    def test_variables(self) -> None:
        bindings = ["x", "y", "te_st"]
        expr1 = compile_expression("cos x + sin y", bindings)
        expr2 = compile_expression("x+x+x-y", bindings)
        expr3 = compile_expression("x*y^3", bindings)
        expr4 = compile_expression("te_st+5", bindings)

        y = 2.0
        for x in range(5):
            values = [float(x), y, float(x)]
            with self.subTest(x=x):
                self.assertAlmostEqual(expr1.evaluate(values), math.cos(x) + math.sin(y))
                self.assertAlmostEqual(expr2.evaluate(values), x + x + x - y)
                self.assertAlmostEqual(expr3.evaluate(values), x * y**3)
                self.assertAlmostEqual(expr4.evaluate(values), x + 5)

    def test_builtins_match_numpy(self) -> None:
        unary = {
            "abs x": np.abs,
            "acos x": np.arccos,
            "asin x": np.arcsin,
            "atan x": np.arctan,
            "ceil x": np.ceil,
            "cos x": np.cos,
            "cosh x": np.cosh,
            "exp x": np.exp,
            "floor x": np.floor,
            "ln x": np.log,
            "log10 x": np.log10,
            "sin x": np.sin,
            "sinh x": np.sinh,
            "sqrt x": np.sqrt,
            "tan x": np.tan,
            "tanh x": np.tanh,
        }
        binary = {
            "atan2(x,y)": np.arctan2,
            "pow(x,y)": np.power,
        }
        xs = np.linspace(-5.0, 5.0, 51)
        ys = np.linspace(-2.0, 2.0, 21)
        with np.errstate(all="ignore"):
            for source, reference in unary.items():
                expr = compile_expression(source, ["x"])
                for x in xs:
                    expected = reference(x)
                    if np.isnan(expected):
                        continue
                    with self.subTest(source=source, x=x):
                        self.assertAlmostEqual(expr.evaluate([x]), float(expected))
            for source, reference in binary.items():
                expr = compile_expression(source, ["x", "y"])
                for x in xs:
                    for y in ys:
                        expected = reference(x, y)
                        if np.isnan(expected):
                            continue
                        with self.subTest(source=source, x=x, y=y):
                            self.assertAlmostEqual(expr.evaluate([x, y]), float(expected))

    def test_power_associativity_modes(self) -> None:
        bindings = ["a", "b"]
        left = [
            ("2^3^4", "(2^3)^4"),
            ("-2^2", "(-2)^2"),
            ("--2^2", "2^2"),
            ("---2^2", "(-2)^2"),
            ("-(2)^2", "(-2)^2"),
            ("-(2*1)^2", "(-2)^2"),
            ("-2^2", "4"),
            ("2^1.1^1.2^1.3", "((2^1.1)^1.2)^1.3"),
            ("-a^b", "(-a)^b"),
            ("-a^-b", "(-a)^(-b)"),
            ("1^0", "1"),
            ("(1)^0", "1"),
            ("-(2)^2", "4"),
        ]
        right = [
            ("2^3^4", "2^(3^4)"),
            ("-2^2", "-(2^2)"),
            ("--2^2", "(2^2)"),
            ("---2^2", "-(2^2)"),
            ("-(2*1)^2", "-(2^2)"),
            ("-2^2", "-4"),
            ("2^1.1^1.2^1.3", "2^(1.1^(1.2^1.3))"),
            ("-a^b", "-(a^b)"),
            ("-a^-b", "-(a^-b)"),
            ("1^0", "1"),
            ("(1)^0", "1"),
            ("-(2)^2", "-4"),
        ]
        for options, pairs in ((None, left), (RIGHT, right)):
            for source, equivalent in pairs:
                with self.subTest(source=source, pow_from_right=options is RIGHT):
                    first = compile_expression(source, bindings, options=options).evaluate([2.0, 3.0])
                    second = compile_expression(equivalent, bindings, options=options).evaluate([2.0, 3.0])
                    self.assertAlmostEqual(first, second)


class EvaluateUserFunctionTests(unittest.TestCase):
    def test_dynamic_functions_of_every_arity(self) -> None:
        bindings = [
            "x",
            "f",
            Binding.function("sum0", lambda: 6.0, 0),
            Binding.function("sum1", lambda a: a * 2, 1),
        ]
        bindings += [Binding.function(f"sum{n}", lambda *args: sum(args), n) for n in range(2, 8)]
        values = [2.0, 5.0]
        cases = [
            ("x", 2),
            ("f+x", 7),
            ("x+x", 4),
            ("x+f", 7),
            ("f+f", 10),
            ("f+sum0", 11),
            ("sum0+sum0", 12),
            ("sum0()+sum0", 12),
            ("sum0+sum0()", 12),
            ("sum0()+(0)+sum0()", 12),
            ("sum1 sum0", 12),
            ("sum1(sum0)", 12),
            ("sum1 f", 10),
            ("sum1 x", 4),
            ("sum2 (sum0, x)", 8),
            ("sum3 (sum0, x, 2)", 10),
            ("sum2(2,3)", 5),
            ("sum3(1,2,3)", 6),
            ("sum4(1,2,3,4)", 10),
            ("sum5(1,2,3,4,5)", 15),
            ("sum6(1,2,3,4,5,6)", 21),
            ("sum7(1,2,3,4,5,6,7)", 28),
        ]
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertAlmostEqual(compile_expression(source, bindings).evaluate(values), expected)

    def test_closures_receive_their_context(self) -> None:
        extra = [0.0]
        bindings = [
            Binding.function("c0", lambda ctx: ctx[0] + 6.0, 0, context=extra, pure=False),
            Binding.function("c1", lambda ctx, a: ctx[0] + a * 2.0, 1, context=extra, pure=False),
            Binding.function("c2", lambda ctx, a, b: ctx[0] + a + b, 2, context=extra, pure=False),
        ]
        cases = [
            ("c0", 6),
            ("c1 4", 8),
            ("c2 (10, 20)", 30),
        ]
        compiled = [(compile_expression(source, bindings), expected) for source, expected in cases]
        for value in (0.0, 10.0, -3.5):
            extra[0] = value
            for expr, expected in compiled:
                with self.subTest(source=expr.source, extra=value):
                    self.assertAlmostEqual(expr.evaluate(), expected + value)

    def test_pure_closures_over_fixed_context(self) -> None:
        cells = [5.0, 6.0, 7.0, 8.0, 9.0]
        bindings = [Binding.function("cell", lambda ctx, a: ctx[int(a)], 1, context=cells)]
        cases = [
            ("cell 0", 5),
            ("cell 1", 6),
            ("cell 0 + cell 1", 11),
            ("cell 1 * cell 3 + cell 4", 57),
        ]
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertAlmostEqual(compile_expression(source, bindings).evaluate(), expected)

    def test_user_function_exceptions_propagate(self) -> None:
        def boom(a):
            raise ZeroDivisionError("boom")

        expr = compile_expression("boom x", ["x", Binding.function("boom", boom, 1)])
        with self.assertRaises(ZeroDivisionError):
            expr.evaluate([1.0])


class EvaluateDeterminismTests(unittest.TestCase):
    def test_repeated_evaluation_is_bit_identical(self) -> None:
        expr = compile_expression("sin(x)^2 + cos(y)*exp(x/y) - atan2(x, y)", ["x", "y"])
        first_grad = [0.0, 0.0]
        second_grad = [0.0, 0.0]
        first = expr.evaluate([0.7, 1.3], first_grad)
        second = expr.evaluate([0.7, 1.3], second_grad)
        self.assertEqual(first, second)
        self.assertEqual(first_grad, second_grad)

    def test_separate_compiles_agree(self) -> None:
        source = "x^3 - 2*x*y + ln(y)"
        first = compile_expression(source, ["x", "y"]).evaluate([1.5, 2.5])
        second = compile_expression(source, ["x", "y"]).evaluate([1.5, 2.5])
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
