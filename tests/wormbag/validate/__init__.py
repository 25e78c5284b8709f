from unittest import TestLoader, TestSuite

def additional_tests():
    from . import test_base, test_bag

    return TestSuite([TestLoader().loadTestsFromModule(m)
                      for m in (test_base, test_bag)])
