"""
Built-in checks: lexical (stop words, spacing, invisible characters),
statistical (similarity, naive Bayes) and the external reputation lookup.
"""
