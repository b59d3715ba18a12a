from iohcma.benchmark import run_bbob

df = run_bbob(fids=range(1, 25), dims=[2, 5], instances=[1, 2, 3], seeds=range(5), budget_factor=2000)
print(df.groupby(["fid", "dim"])["aocc"].mean().unstack())
df.to_csv("bbob_cmaes.csv", index=False)
