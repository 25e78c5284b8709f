from unittest import TestLoader, TestSuite

def additional_tests():
    from . import (test_constants, test_codec, test_digest, test_archive,
                   test_fill, test_load, test_adapt)

    suites = [TestLoader().loadTestsFromModule(m)
              for m in (test_constants, test_codec, test_digest, test_archive,
                        test_fill, test_load, test_adapt)]
    return TestSuite(suites)
