from unittest import TestLoader, TestSuite

def additional_tests():
    from . import test_bag

    return TestSuite([TestLoader().loadTestsFromModule(test_bag)])
