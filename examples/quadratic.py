import logging

from iohcma import CmaesOptimizer, wrap_problem

logging.basicConfig(level=logging.INFO)


def quadratic(x):
    return (x[0] - 3) ** 2 + (10 * (x[1] + 2)) ** 2


problem = wrap_problem(quadratic, [0, 0], sigma=1.5, name="quadratic")

result = CmaesOptimizer(problem, show_progress=True).optimize()
print("x1={0}, x2={1}".format(*result.x))
print(result.message)

# same problem, each generation evaluated on 4 threads
result = CmaesOptimizer(problem).optimize_parallel(4)
print("x1={0}, x2={1}".format(*result.x))
