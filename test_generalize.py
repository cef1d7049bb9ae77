from generalize import Settings

SHARED_PRODUCT = """\
%x:i4 = var
%y:i4 = var
%z:i4 = var
%0:i4 = mul %x, %y
%1:i4 = add %0, 0:i4
%2:i4 = add %1, %z
infer %2
%3:i4 = add %0, %z
result %3
"""

TWO_VARS = """\
%x:i4 = var
%y:i4 = var
%0:i4 = and %x, %y
infer %0
%1:i4 = and %y, %x
result %1
"""

ONE_VAR = """\
%x:i4 = var
%0:i4 = and %x, %x
infer %0
%1:i4 = or %x, %x
result %1
"""

def _run(tmp_path, text, **args):
    path = tmp_path / 'rules.opt'
    path.write_text(text)
    return Settings(input=str(path), **args).exec()

def test_reduce(tmp_path, capsys):
    assert _run(tmp_path, SHARED_PRODUCT, reduce=True) == 0
    out = capsys.readouterr().out
    assert 'mul' not in out
    assert '%newvar' in out
    assert out.endswith('\n\n')

def test_errors_continue_with_next_rule(tmp_path, capsys):
    assert _run(tmp_path, TWO_VARS + ONE_VAR, generalize_width=True) == 0
    captured = capsys.readouterr()
    assert 'error in rule 0' in captured.err
    assert captured.out.count('infer') == 63

def test_fixit(tmp_path, capsys):
    text = '%x:i4 = var\n%0:i4 = add %x, 4:i4\ninfer %0\n%1:i4 = or %x, 4:i4\nresult %1\n'
    assert _run(tmp_path, text, fixit=True) == 0
    assert 'knownBits=' in capsys.readouterr().out

def test_parse_error(tmp_path, capsys):
    assert _run(tmp_path, '%x:i4 = var\ninfer %y\nresult %x\n', reduce=True) == 1
    assert ':2:' in capsys.readouterr().err

def test_missing_file(tmp_path, capsys):
    assert Settings(input=str(tmp_path / 'missing.opt')).exec() == 1
    assert 'error' in capsys.readouterr().err
